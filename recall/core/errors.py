"""Error taxonomy for scheduling and sync."""


class TopicNotFoundError(LookupError):
    """Requested topic id does not exist in the topic store."""

    def __init__(self, topic_id: str) -> None:
        super().__init__(f"Topic with id '{topic_id}' not found")
        self.topic_id = topic_id


class SyncError(Exception):
    """Base class for sync failures."""


class SyncTransientError(SyncError):
    """Network, auth or rate-limit failure; eligible for retry on the next trigger."""


class BackupNotFoundError(SyncError):
    """A remote backup blob is missing or unreadable."""
