"""Schemas for the sync queue, sync status and remote blobs."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class SyncOperationKind(str, Enum):
    """Kinds of queued sync operations. Every kind resolves to a full backup."""

    FULL_BACKUP = "full_backup"
    UPDATE_TOPIC = "update_topic"
    DELETE_TOPIC = "delete_topic"


class SyncOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    ALREADY_SYNCING = "already_syncing"
    FAILED = "failed"


class NetworkType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    WIRED = "wired"
    VPN = "vpn"
    UNKNOWN = "unknown"
    OFFLINE = "offline"


class SyncQueueItem(BaseModel):
    """A pending sync operation persisted in the `sync_queue` table."""

    id: Optional[int] = Field(None, description="Auto-assigned sequence number")
    kind: SyncOperationKind
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    priority: int = Field(default=0, description="Higher values are processed first")
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None


class SyncStatus(BaseModel):
    """Singleton sync bookkeeping row."""

    last_sync_attempt_at: datetime = EPOCH
    last_successful_sync_at: datetime = EPOCH
    pending_count: int = 0
    is_syncing: bool = False

    def needs_sync(self, min_interval: timedelta, now: Optional[datetime] = None) -> bool:
        """True when changes are pending or the last success is older than min_interval."""
        if self.pending_count > 0:
            return True
        current = now or datetime.now(timezone.utc)
        return current - self.last_successful_sync_at >= min_interval


class SyncPreferences(BaseModel):
    """User-controlled sync preferences read by the orchestrator's gating."""

    auto_sync_enabled: bool = True
    wifi_only: bool = False
    quiet_hours_enabled: bool = True
    quiet_hours_start: int = Field(default=22, ge=0, le=23)
    quiet_hours_end: int = Field(default=7, ge=0, le=23)
    min_battery_percent: int = Field(default=15, ge=0, le=100)
    sync_interval_hours: int = Field(default=12, ge=1)
    reviewed_count_trigger: int = Field(default=5, ge=1)
    silent_sync: bool = True


class SyncReport(BaseModel):
    """Aggregate result of one sync pass, used for user-facing notification."""

    outcome: SyncOutcome
    succeeded: int = 0
    failed: int = 0
    abandoned: int = 0
    backup_uploaded: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == SyncOutcome.COMPLETED and self.failed == 0


class BatchUploadResult(BaseModel):
    succeeded: int = 0
    total: int = 0
    chunks: int = 0
    failed_chunks: int = 0

    @property
    def complete(self) -> bool:
        return self.failed_chunks == 0


class BlobMetadata(BaseModel):
    """Metadata for a blob in the app-owned remote folder."""

    id: str
    name: str
    size: int = 0
    created_at: datetime
    description: str = ""

    @property
    def size_formatted(self) -> str:
        if self.size < 1024:
            return f"{self.size} B"
        if self.size < 1024 * 1024:
            return f"{self.size / 1024:.1f} KB"
        return f"{self.size / (1024 * 1024):.1f} MB"
