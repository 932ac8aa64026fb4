"""Domain models."""

from .sync import (
    BatchUploadResult,
    BlobMetadata,
    NetworkType,
    SyncOperationKind,
    SyncOutcome,
    SyncPreferences,
    SyncQueueItem,
    SyncReport,
    SyncStatus,
)
from .topic import Topic

__all__ = [
    "BatchUploadResult",
    "BlobMetadata",
    "NetworkType",
    "SyncOperationKind",
    "SyncOutcome",
    "SyncPreferences",
    "SyncQueueItem",
    "SyncReport",
    "SyncStatus",
    "Topic",
]
