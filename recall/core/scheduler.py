"""Spaced-repetition scheduling on a fixed interval ladder.

Stages map to review intervals in days::

    stage 0 -> 1 day     (initial learning)
    stage 1 -> 3 days    (short-term consolidation)
    stage 2 -> 7 days    (weekly checkpoint)
    stage 3 -> 14 days   (bi-weekly)
    stage 4+ -> 30 days  (maintenance, applied indefinitely)

Reviewing a topic advances its stage by one and schedules the next review
from the review time. A manual schedule is an overlay that pins
`next_due_at` until it is released; reviews on a manual schedule only bump
the counters.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from recall.core.errors import TopicNotFoundError
from recall.database.sqlite import TopicDB
from recall.database.sync_queue import SyncQueueDB
from recall.models import SyncOperationKind, SyncQueueItem, Topic
from recall.sync.notifications import Notifier

logger = logging.getLogger(__name__)

DEFAULT_LADDER: tuple[int, ...] = (1, 3, 7, 14, 30)

# reset_topic re-enters the cycle tomorrow regardless of the ladder's stage-0 value
RESET_DELAY = timedelta(days=1)


def local_now() -> datetime:
    return datetime.now().astimezone()


def interval_for_stage(stage: int, ladder: Sequence[int] = DEFAULT_LADDER) -> int:
    """Return the interval in days for stage; stages past the end reuse the last value."""
    if stage < 0:
        logger.warning("Negative stage (%d) detected, using stage 0 interval", stage)
        stage = 0
    last = len(ladder) - 1
    return ladder[min(stage, last)]


def compute_next_due(
    stage: int, from_time: datetime, ladder: Sequence[int] = DEFAULT_LADDER
) -> datetime:
    """Return from_time plus the ladder interval for stage."""
    return from_time + timedelta(days=interval_for_stage(stage, ladder))


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class Scheduler:
    """Advances topics through the ladder and persists every change.

    Reminder scheduling and sync enqueueing are best-effort side effects: a
    failure there is logged and never undoes the stored mutation.
    """

    def __init__(
        self,
        db: TopicDB,
        notifier: Optional[Notifier] = None,
        sync_queue: Optional[SyncQueueDB] = None,
        ladder: Sequence[int] = DEFAULT_LADDER,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        if not ladder or any(days <= 0 for days in ladder):
            raise ValueError("Interval ladder must be a non-empty list of positive day counts")
        if list(ladder) != sorted(ladder):
            raise ValueError("Interval ladder must be ascending")
        self._db = db
        self._notifier = notifier
        self._queue = sync_queue
        self._ladder = tuple(ladder)
        self._clock = clock

    @property
    def ladder(self) -> tuple[int, ...]:
        return self._ladder

    def compute_next_due(self, stage: int, from_time: datetime) -> datetime:
        return compute_next_due(stage, from_time, self._ladder)

    # ---- Mutations ----

    def create_topic(self, title: str, tags: Optional[list[str]] = None) -> Topic:
        """Create a stage-0 topic due after the first ladder interval."""
        if not title or not title.strip():
            raise ValueError("Title cannot be empty")
        now = self._clock()
        topic = Topic(
            id=str(uuid.uuid4()),
            title=title.strip(),
            tags=tags or [],
            created_at=now,
            stage=0,
            next_due_at=self.compute_next_due(0, now),
            last_modified_at=now,
        )
        self._db.upsert(topic)
        self._schedule_reminder(topic.id, topic.next_due_at)
        self._request_sync(topic.id, SyncOperationKind.UPDATE_TOPIC)
        return topic

    def mark_reviewed(self, topic_id: str, return_to_automatic: bool = False) -> Topic:
        """Record a review and advance the topic one stage.

        Args:
            topic_id: Topic to update.
            return_to_automatic: Release a manual schedule and take the
                automatic path.

        Returns:
            The persisted topic.

        Raises:
            TopicNotFoundError: If the topic does not exist.
        """
        topic = self._require(topic_id)
        now = self._clock()

        if topic.uses_manual_schedule and not return_to_automatic:
            updated = topic.model_copy(
                update={
                    "last_reviewed_at": now,
                    "review_count": topic.review_count + 1,
                    "last_modified_at": now,
                }
            )
            self._db.upsert(updated)
            logger.info("Reviewed %s (manual schedule kept)", topic_id)
            self._request_sync(topic_id, SyncOperationKind.UPDATE_TOPIC)
            return updated

        next_stage = topic.stage + 1
        next_due = self.compute_next_due(next_stage, now)
        updated = topic.model_copy(
            update={
                "stage": next_stage,
                "next_due_at": next_due,
                "last_reviewed_at": now,
                "review_count": topic.review_count + 1,
                "uses_manual_schedule": False,
                "manual_due_at": None,
                "last_modified_at": now,
            }
        )
        self._db.upsert(updated)
        logger.info(
            "Reviewed %s: stage %d -> %d, next review %s",
            topic_id,
            topic.stage,
            next_stage,
            next_due.date().isoformat(),
        )
        self._schedule_reminder(topic_id, next_due)
        self._request_sync(topic_id, SyncOperationKind.UPDATE_TOPIC)
        return updated

    def reset_topic(self, topic_id: str) -> Topic:
        """Send a topic back to stage 0, due tomorrow."""
        topic = self._require(topic_id)
        now = self._clock()
        tomorrow = now + RESET_DELAY
        updated = topic.model_copy(
            update={
                "stage": 0,
                "review_count": 0,
                "last_reviewed_at": None,
                "uses_manual_schedule": False,
                "manual_due_at": None,
                "next_due_at": tomorrow,
                "last_modified_at": now,
            }
        )
        self._db.upsert(updated)
        logger.info("Reset %s (previous stage %d)", topic_id, topic.stage)
        self._schedule_reminder(topic_id, tomorrow)
        self._request_sync(topic_id, SyncOperationKind.UPDATE_TOPIC)
        return updated

    def set_manual_schedule(self, topic_id: str, when: datetime) -> Topic:
        """Pin the next review to when until the manual schedule is cleared."""
        topic = self._require(topic_id)
        updated = topic.model_copy(
            update={
                "uses_manual_schedule": True,
                "manual_due_at": when,
                "next_due_at": when,
                "last_modified_at": self._clock(),
            }
        )
        self._db.upsert(updated)
        self._schedule_reminder(topic_id, when)
        self._request_sync(topic_id, SyncOperationKind.UPDATE_TOPIC)
        return updated

    def clear_manual_schedule(self, topic_id: str, recalculate: bool = True) -> Topic:
        """Return to automatic scheduling, optionally recomputing the due date."""
        topic = self._require(topic_id)
        now = self._clock()
        next_due = topic.next_due_at
        if recalculate:
            next_due = self.compute_next_due(topic.stage, topic.last_reviewed_at or now)
        updated = topic.model_copy(
            update={
                "uses_manual_schedule": False,
                "manual_due_at": None,
                "next_due_at": next_due,
                "last_modified_at": now,
            }
        )
        self._db.upsert(updated)
        self._request_sync(topic_id, SyncOperationKind.UPDATE_TOPIC)
        return updated

    def reschedule_to(self, topic_id: str, when: datetime, manual: bool) -> Topic:
        """Move the next review to when, as a manual pin or a one-off automatic move."""
        topic = self._require(topic_id)
        updated = topic.model_copy(
            update={
                "next_due_at": when,
                "uses_manual_schedule": manual,
                "manual_due_at": when if manual else None,
                "last_modified_at": self._clock(),
            }
        )
        self._db.upsert(updated)
        self._schedule_reminder(topic_id, when)
        self._request_sync(topic_id, SyncOperationKind.UPDATE_TOPIC)
        return updated

    def delete_topic(self, topic_id: str) -> None:
        """Delete a topic, drop its queued operations and queue the deletion."""
        self._require(topic_id)
        self._db.delete(topic_id)
        if self._notifier is not None:
            try:
                self._notifier.cancel_reminder(topic_id)
            except Exception as e:
                logger.warning("Failed to cancel reminder for %s: %s", topic_id, e)
        if self._queue is not None:
            try:
                dropped = self._queue.remove_for_topic(topic_id)
                if dropped:
                    logger.debug("Dropped %d queued operations for %s", dropped, topic_id)
            except sqlite3.Error as e:
                logger.warning("Failed to prune queue for %s: %s", topic_id, e)
        self._request_sync(topic_id, SyncOperationKind.DELETE_TOPIC)

    # ---- Queries ----

    def get_due(self, now: Optional[datetime] = None) -> list[Topic]:
        """Topics due at or before now, soonest first (includes overdue)."""
        return self._db.query_due(self._now(now))

    def get_upcoming(self, now: Optional[datetime] = None, window_days: int = 7) -> list[Topic]:
        """Topics due after now and no later than now + window_days."""
        current = self._now(now)
        return self._db.query_due_between(current, current + timedelta(days=window_days))

    def get_overdue(self, now: Optional[datetime] = None) -> list[Topic]:
        """Topics due before the start of today, most overdue first."""
        return self._db.query_due_before(start_of_day(self._now(now)))

    def get_due_today(self, now: Optional[datetime] = None) -> list[Topic]:
        """Due topics that are not overdue."""
        current = self._now(now)
        today = start_of_day(current)
        return [t for t in self._db.query_due(current) if t.next_due_at >= today]

    def scheduling_stats(self, now: Optional[datetime] = None) -> dict[str, Any]:
        current = self._now(now)
        today = start_of_day(current)
        week_ahead = current + timedelta(days=7)
        topics = self._db.get_all()
        total_reviews = sum(t.review_count for t in topics)
        return {
            "total_topics": len(topics),
            "due_today": sum(1 for t in topics if today <= t.next_due_at <= current),
            "overdue": sum(1 for t in topics if t.next_due_at < today),
            "upcoming_7_days": sum(1 for t in topics if current < t.next_due_at <= week_ahead),
            "total_reviews": total_reviews,
            "manual_schedules": sum(1 for t in topics if t.uses_manual_schedule),
            "average_reviews": round(total_reviews / len(topics), 1) if topics else 0.0,
            "stage_distribution": dict(sorted(Counter(t.stage for t in topics).items())),
        }

    def stage_description(self, stage: int) -> str:
        days = interval_for_stage(max(stage, 0), self._ladder)
        return {1: "1 day", 7: "1 week", 14: "2 weeks", 30: "1 month"}.get(days, f"{days} days")

    # ---- Helpers ----

    def _now(self, now: Optional[datetime]) -> datetime:
        # Stored times are aware; naive input is read as local time.
        current = now or self._clock()
        if current.tzinfo is None:
            current = current.astimezone()
        return current

    def _require(self, topic_id: str) -> Topic:
        topic = self._db.get(topic_id)
        if topic is None:
            raise TopicNotFoundError(topic_id)
        return topic

    def _schedule_reminder(self, topic_id: str, when: datetime) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.schedule_reminder(topic_id, when)
        except Exception as e:
            # Reminder delivery is independent of the stored schedule.
            logger.warning("Failed to schedule reminder for %s: %s", topic_id, e)

    def _request_sync(self, topic_id: str, kind: SyncOperationKind) -> None:
        if self._queue is None:
            return
        try:
            self._queue.enqueue(
                SyncQueueItem(kind=kind, payload={"topic_id": topic_id}, created_at=self._clock())
            )
        except sqlite3.Error as e:
            logger.warning("Failed to queue %s for %s: %s", kind.value, topic_id, e)
