"""Environment and settings (Pydantic Settings)."""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default data directory: ~/.recall/data/
_data_dir = Path.home() / ".recall" / "data"


class Settings(BaseSettings):
    """Recall application settings loaded from environment and .env.

    User-mutable sync preferences (auto-sync, Wi-Fi only, quiet hours, ...)
    are persisted in the SQLite preferences table; the values here are only
    their defaults until the user changes them.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths (local-first data stored in ~/.recall/data/)
    db_path: Path = _data_dir / "recall.db"
    # App-owned remote folder (e.g. a locally mounted cloud drive)
    backup_dir: Path = Path.home() / ".recall" / "remote"

    # Scheduling
    interval_ladder: list[int] = Field(default_factory=lambda: [1, 3, 7, 14, 30])

    # Sync engine
    max_retries: int = 3
    queue_batch_limit: int = 50
    upload_chunk_size: int = 10
    chunk_delay_seconds: float = 0.5
    stale_sync_minutes: int = 30
    resume_sync_after_minutes: int = 60
    backoff_base_minutes: int = 15

    # Preference defaults
    auto_sync_enabled: bool = True
    wifi_only: bool = False
    quiet_hours_enabled: bool = True
    quiet_hours_start: int = 22  # 10 PM
    quiet_hours_end: int = 7  # 7 AM
    min_battery_percent: int = 15
    sync_interval_hours: int = 12
    reviewed_count_trigger: int = 5
    silent_sync: bool = True

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_file: Path = _data_dir / "recall.log"


def get_settings() -> Settings:
    """Return application settings (singleton-like)."""
    return Settings()
