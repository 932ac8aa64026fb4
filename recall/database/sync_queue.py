"""Durable sync operation queue and singleton sync status (SQLite)."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from recall.database.sqlite import from_db_time, to_db_time
from recall.models import SyncOperationKind, SyncQueueItem, SyncStatus
from recall.models.sync import EPOCH

logger = logging.getLogger(__name__)


class SyncQueueDB:
    """SQLite wrapper for the sync_queue and sync_status tables.

    Every public call runs in its own transaction. Queue rows are addressed
    only by their own id, so a drain pass removing the rows it peeked cannot
    drop rows enqueued concurrently for the same topic. The denormalized
    pending count is refreshed inside the same transaction as each mutation.
    """

    def __init__(self, db_path: Path) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def init_db(self) -> None:
        """Create queue/status tables and the singleton status row."""
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at DATETIME NOT NULL,
                    priority INTEGER NOT NULL DEFAULT 0,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_queue_order "
                "ON sync_queue(priority DESC, created_at ASC)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_status (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    last_sync_attempt_at DATETIME NOT NULL,
                    last_successful_sync_at DATETIME NOT NULL,
                    pending_count INTEGER NOT NULL DEFAULT 0,
                    is_syncing INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO sync_status (
                    id, last_sync_attempt_at, last_successful_sync_at,
                    pending_count, is_syncing
                )
                VALUES (1, ?, ?, 0, 0)
                """,
                (to_db_time(EPOCH), to_db_time(EPOCH)),
            )
            conn.commit()

    # ---- Queue ----

    def enqueue(self, item: SyncQueueItem) -> int:
        """Append an operation. Returns its assigned id."""
        with sqlite3.connect(self._path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_queue (operation, payload, created_at, priority,
                                        retry_count, last_error)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    item.kind.value,
                    json.dumps(item.payload),
                    to_db_time(item.created_at),
                    item.priority,
                    item.retry_count,
                    item.last_error,
                ),
            )
            self._refresh_pending_count(conn)
            conn.commit()
        logger.debug("Queued sync operation %s (id=%s)", item.kind.value, cursor.lastrowid)
        return int(cursor.lastrowid)

    def peek_pending(self, limit: Optional[int] = None) -> list[SyncQueueItem]:
        """Return pending operations ordered by priority desc, then age."""
        query = "SELECT * FROM sync_queue ORDER BY priority DESC, created_at ASC, id ASC"
        params: tuple[Any, ...] = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        with sqlite3.connect(self._path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(query, params).fetchall()
        return [_row_to_queue_item(r) for r in rows]

    def list_by_kind(self, kind: SyncOperationKind) -> list[SyncQueueItem]:
        """Return queued operations of one kind, oldest first."""
        with sqlite3.connect(self._path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                "SELECT * FROM sync_queue WHERE operation = ? ORDER BY created_at ASC, id ASC",
                (kind.value,),
            ).fetchall()
        return [_row_to_queue_item(r) for r in rows]

    def get(self, item_id: int) -> Optional[SyncQueueItem]:
        with sqlite3.connect(self._path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT * FROM sync_queue WHERE id = ?", (item_id,)
            ).fetchone()
        return _row_to_queue_item(row) if row else None

    def remove(self, item_id: int) -> None:
        """Remove a completed operation."""
        with sqlite3.connect(self._path) as conn:
            conn.execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))
            self._refresh_pending_count(conn)
            conn.commit()

    def remove_for_topic(self, topic_id: str) -> int:
        """Remove queued operations whose payload references topic_id."""
        with sqlite3.connect(self._path) as conn:
            cursor = conn.execute(
                "DELETE FROM sync_queue WHERE json_extract(payload, '$.topic_id') = ?",
                (topic_id,),
            )
            self._refresh_pending_count(conn)
            conn.commit()
        return cursor.rowcount

    def increment_retry(self, item_id: int, error: str) -> None:
        """Record a failed attempt for one operation."""
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "UPDATE sync_queue SET retry_count = retry_count + 1, last_error = ? "
                "WHERE id = ?",
                (error, item_id),
            )
            conn.commit()

    def evict_exceeding(self, max_retries: int) -> int:
        """Drop operations whose retry_count reached max_retries. Returns count dropped."""
        with sqlite3.connect(self._path) as conn:
            cursor = conn.execute(
                "DELETE FROM sync_queue WHERE retry_count >= ?", (max_retries,)
            )
            self._refresh_pending_count(conn)
            conn.commit()
        if cursor.rowcount:
            logger.warning(
                "Evicted %d sync operations after %d failed attempts",
                cursor.rowcount,
                max_retries,
            )
        return cursor.rowcount

    def clear(self) -> None:
        with sqlite3.connect(self._path) as conn:
            conn.execute("DELETE FROM sync_queue")
            self._refresh_pending_count(conn)
            conn.commit()

    def size(self) -> int:
        with sqlite3.connect(self._path) as conn:
            row = conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()
        return int(row[0])

    # ---- Status ----

    def read_status(self) -> SyncStatus:
        """Return the singleton sync status (defaults if the row is missing)."""
        with sqlite3.connect(self._path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM sync_status WHERE id = 1").fetchone()
        if row is None:
            return SyncStatus()
        return SyncStatus(
            last_sync_attempt_at=from_db_time(row["last_sync_attempt_at"]) or EPOCH,
            last_successful_sync_at=from_db_time(row["last_successful_sync_at"]) or EPOCH,
            pending_count=row["pending_count"],
            is_syncing=bool(row["is_syncing"]),
        )

    def write_status(
        self,
        *,
        last_sync_attempt_at: Optional[datetime] = None,
        last_successful_sync_at: Optional[datetime] = None,
        is_syncing: Optional[bool] = None,
    ) -> None:
        """Update only the provided status fields."""
        values: dict[str, Any] = {}
        if last_sync_attempt_at is not None:
            values["last_sync_attempt_at"] = to_db_time(last_sync_attempt_at)
        if last_successful_sync_at is not None:
            values["last_successful_sync_at"] = to_db_time(last_successful_sync_at)
        if is_syncing is not None:
            values["is_syncing"] = int(is_syncing)
        if not values:
            return
        assignments = ", ".join(f"{column} = ?" for column in values)
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                f"UPDATE sync_status SET {assignments} WHERE id = 1",
                tuple(values.values()),
            )
            conn.commit()

    def _refresh_pending_count(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            "UPDATE sync_status SET pending_count = "
            "(SELECT COUNT(*) FROM sync_queue) WHERE id = 1"
        )


def _row_to_queue_item(row: sqlite3.Row) -> SyncQueueItem:
    try:
        payload = json.loads(row["payload"] or "{}")
    except json.JSONDecodeError:
        payload = {}

    return SyncQueueItem(
        id=row["id"],
        kind=SyncOperationKind(row["operation"]),
        payload=payload,
        created_at=from_db_time(row["created_at"]) or datetime.now(timezone.utc),
        priority=row["priority"],
        retry_count=row["retry_count"],
        last_error=row["last_error"],
    )
