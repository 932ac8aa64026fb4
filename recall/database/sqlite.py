"""Relational wrapper for SQLite (topics table)."""

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from recall.models import Topic


def to_db_time(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to a fixed-width UTC ISO string so SQL text comparison orders correctly."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string, returning None for invalid input."""
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TopicDB:
    """SQLite wrapper for the topics table. All I/O stays in this module."""

    def __init__(self, db_path: Path) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def init_db(self) -> None:
        """Create topics table and indexes if they do not exist."""
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS topics (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    tags TEXT,
                    created_at DATETIME,
                    stage INTEGER NOT NULL DEFAULT 0,
                    next_due_at DATETIME NOT NULL,
                    last_reviewed_at DATETIME,
                    review_count INTEGER NOT NULL DEFAULT 0,
                    uses_manual_schedule INTEGER NOT NULL DEFAULT 0,
                    manual_due_at DATETIME,
                    last_modified_at DATETIME NOT NULL
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_topics_next_due ON topics(next_due_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_topics_modified "
                "ON topics(last_modified_at)"
            )
            conn.commit()

    def get(self, topic_id: str) -> Optional[Topic]:
        """Return one topic by id or None."""
        with sqlite3.connect(self._path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT * FROM topics WHERE id = ?", (topic_id,)
            ).fetchone()
        return _row_to_topic(row) if row else None

    def get_all(self) -> list[Topic]:
        """Return every topic ordered by id (stable order for snapshots)."""
        return self._select("SELECT * FROM topics ORDER BY id ASC")

    def upsert(self, topic: Topic) -> None:
        """Insert a topic or replace the stored row with the same id."""
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                """
                INSERT INTO topics (id, title, tags, created_at, stage, next_due_at,
                                    last_reviewed_at, review_count,
                                    uses_manual_schedule, manual_due_at,
                                    last_modified_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title, tags=excluded.tags,
                    created_at=excluded.created_at, stage=excluded.stage,
                    next_due_at=excluded.next_due_at,
                    last_reviewed_at=excluded.last_reviewed_at,
                    review_count=excluded.review_count,
                    uses_manual_schedule=excluded.uses_manual_schedule,
                    manual_due_at=excluded.manual_due_at,
                    last_modified_at=excluded.last_modified_at
                """,
                (
                    topic.id,
                    topic.title,
                    json.dumps(topic.tags),
                    to_db_time(topic.created_at),
                    topic.stage,
                    to_db_time(topic.next_due_at),
                    to_db_time(topic.last_reviewed_at),
                    topic.review_count,
                    int(topic.uses_manual_schedule),
                    to_db_time(topic.manual_due_at),
                    to_db_time(topic.last_modified_at),
                ),
            )
            conn.commit()

    def delete(self, topic_id: str) -> bool:
        """Delete a topic. Returns True if a row was removed."""
        with sqlite3.connect(self._path) as conn:
            cursor = conn.execute("DELETE FROM topics WHERE id = ?", (topic_id,))
            conn.commit()
        return cursor.rowcount > 0

    def count(self) -> int:
        with sqlite3.connect(self._path) as conn:
            row = conn.execute("SELECT COUNT(*) FROM topics").fetchone()
        return int(row[0])

    def query_due(self, now: datetime) -> list[Topic]:
        """Return topics with next_due_at <= now, soonest first."""
        return self._select(
            "SELECT * FROM topics WHERE next_due_at <= ? ORDER BY next_due_at ASC",
            (to_db_time(now),),
        )

    def query_due_before(self, cutoff: datetime) -> list[Topic]:
        """Return topics with next_due_at strictly before cutoff."""
        return self._select(
            "SELECT * FROM topics WHERE next_due_at < ? ORDER BY next_due_at ASC",
            (to_db_time(cutoff),),
        )

    def query_due_between(self, start: datetime, end: datetime) -> list[Topic]:
        """Return topics with start < next_due_at <= end."""
        return self._select(
            "SELECT * FROM topics WHERE next_due_at > ? AND next_due_at <= ? "
            "ORDER BY next_due_at ASC",
            (to_db_time(start), to_db_time(end)),
        )

    def query_modified_since(self, since: datetime) -> list[Topic]:
        """Return topics modified or reviewed after since (for incremental sync)."""
        ts = to_db_time(since)
        return self._select(
            "SELECT * FROM topics WHERE last_modified_at > ? "
            "OR (last_reviewed_at IS NOT NULL AND last_reviewed_at > ?) "
            "ORDER BY last_modified_at ASC",
            (ts, ts),
        )

    def _select(self, query: str, params: tuple = ()) -> list[Topic]:
        with sqlite3.connect(self._path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(query, params).fetchall()
        return [_row_to_topic(r) for r in rows]


def _row_to_topic(row: sqlite3.Row) -> Topic:
    """Convert database row to Topic, handling malformed tag data gracefully."""
    try:
        tags = json.loads(row["tags"] or "[]")
    except json.JSONDecodeError:
        tags = []

    return Topic(
        id=row["id"],
        title=row["title"],
        tags=tags,
        created_at=from_db_time(row["created_at"]) or datetime.now(timezone.utc),
        stage=row["stage"],
        next_due_at=from_db_time(row["next_due_at"]),
        last_reviewed_at=from_db_time(row["last_reviewed_at"]),
        review_count=row["review_count"],
        uses_manual_schedule=bool(row["uses_manual_schedule"]),
        manual_due_at=from_db_time(row["manual_due_at"]),
        last_modified_at=from_db_time(row["last_modified_at"]),
    )
