"""Database layer - SQLite wrappers for topics, the sync queue, and preferences."""

from .preferences import PreferenceStore
from .sqlite import TopicDB
from .sync_queue import SyncQueueDB

__all__ = ["PreferenceStore", "SyncQueueDB", "TopicDB"]
