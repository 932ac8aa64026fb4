"""Key/value preference store (SQLite) for user-mutable sync settings."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from recall.config import Settings
from recall.database.sqlite import from_db_time, to_db_time
from recall.models import SyncPreferences

# Bookkeeping keys written by the sync engine
LAST_BACKUP_HASH = "last_backup_hash"
LAST_INCREMENTAL_SYNC_AT = "last_incremental_sync_at"
REVIEWED_COUNT = "current_reviewed_count"

# Keys that never belong in an exported snapshot
_BOOKKEEPING_KEYS = (LAST_BACKUP_HASH, LAST_INCREMENTAL_SYNC_AT, REVIEWED_COUNT)


class PreferenceStore:
    """JSON-encoded values keyed by name, in the `preferences` table."""

    def __init__(self, db_path: Path) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def init_db(self) -> None:
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS preferences (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        with sqlite3.connect(self._path) as conn:
            row = conn.execute(
                "SELECT value FROM preferences WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            return default

    def set(self, key: str, value: Any) -> None:
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "INSERT INTO preferences (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(value)),
            )
            conn.commit()

    def get_datetime(self, key: str) -> Optional[datetime]:
        return from_db_time(self.get(key))

    def set_datetime(self, key: str, value: datetime) -> None:
        self.set(key, to_db_time(value))

    def all(self) -> dict[str, Any]:
        """Return every stored preference."""
        with sqlite3.connect(self._path) as conn:
            rows = conn.execute("SELECT key, value FROM preferences ORDER BY key").fetchall()
        result: dict[str, Any] = {}
        for key, raw in rows:
            try:
                result[key] = json.loads(raw)
            except json.JSONDecodeError:
                continue
        return result

    def load_sync_preferences(self, settings: Settings) -> SyncPreferences:
        """Materialize sync preferences; unset keys fall back to settings defaults."""
        values: dict[str, Any] = {}
        stored = self.all()
        for name in SyncPreferences.model_fields:
            values[name] = stored.get(name, getattr(settings, name))
        return SyncPreferences(**values)

    def save_sync_preferences(self, prefs: SyncPreferences) -> None:
        for name, value in prefs.model_dump().items():
            self.set(name, value)

    def export_settings(self) -> dict[str, Any]:
        """User preferences included in full backups (bookkeeping keys excluded)."""
        return {k: v for k, v in self.all().items() if k not in _BOOKKEEPING_KEYS}
