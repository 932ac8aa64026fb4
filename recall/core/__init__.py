"""Application logic layer."""

from .errors import BackupNotFoundError, SyncError, SyncTransientError, TopicNotFoundError
from .scheduler import (
    DEFAULT_LADDER,
    Scheduler,
    compute_next_due,
    interval_for_stage,
    start_of_day,
)

__all__ = [
    "BackupNotFoundError",
    "DEFAULT_LADDER",
    "Scheduler",
    "SyncError",
    "SyncTransientError",
    "TopicNotFoundError",
    "compute_next_due",
    "interval_for_stage",
    "start_of_day",
]
