"""Unit tests for the interval-ladder scheduler."""

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from recall.core.errors import TopicNotFoundError
from recall.core.scheduler import (
    Scheduler,
    compute_next_due,
    interval_for_stage,
    start_of_day,
)
from recall.database.sqlite import TopicDB
from recall.database.sync_queue import SyncQueueDB
from recall.models import SyncOperationKind, Topic
from recall.sync.notifications import LogNotifier

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_ladder_examples() -> None:
    """Stage 0 -> +1 day, stage 2 -> +7 days, stage 7 -> +30 days."""
    assert compute_next_due(0, JAN_1) == datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert compute_next_due(2, JAN_1) == datetime(2024, 1, 8, tzinfo=timezone.utc)
    assert compute_next_due(7, JAN_1) == datetime(2024, 1, 31, tzinfo=timezone.utc)


def test_negative_stage_uses_stage_zero() -> None:
    """Negative stages fall back to the first interval."""
    assert interval_for_stage(-3) == 1


def test_stages_past_ladder_end_reuse_last_interval() -> None:
    """Stages past the ladder end reuse the last interval."""
    assert [interval_for_stage(s) for s in range(7)] == [1, 3, 7, 14, 30, 30, 30]


@pytest.mark.parametrize("ladder", [[], [1, 0, 7], [7, 3, 1]])
def test_invalid_ladder_rejected(topic_db: TopicDB, ladder: list[int]) -> None:
    """Empty, non-positive or unsorted ladders are rejected."""
    with pytest.raises(ValueError):
        Scheduler(topic_db, ladder=ladder)


def test_create_topic_due_after_first_interval(scheduler: Scheduler, clock: Any) -> None:
    """New topics start at stage 0 and are due one day later."""
    topic = scheduler.create_topic("  Dijkstra  ", ["graphs"])
    assert topic.title == "Dijkstra"
    assert topic.stage == 0
    assert topic.review_count == 0
    assert topic.next_due_at == clock() + timedelta(days=1)


def test_create_topic_rejects_blank_title(scheduler: Scheduler) -> None:
    """A blank title is rejected."""
    with pytest.raises(ValueError):
        scheduler.create_topic("   ")


def test_mark_reviewed_advances_stage(scheduler: Scheduler, topic_db: TopicDB, clock: Any) -> None:
    """Each review moves one stage up and schedules from the review time."""
    topic = scheduler.create_topic("Heaps")
    clock.advance(days=1)

    reviewed = scheduler.mark_reviewed(topic.id)

    assert reviewed.stage == 1
    assert reviewed.review_count == 1
    assert reviewed.last_reviewed_at == clock()
    assert reviewed.next_due_at == clock() + timedelta(days=3)
    stored = topic_db.get(topic.id)
    assert stored is not None
    assert stored.stage == 1


def test_reviews_walk_the_whole_ladder(scheduler: Scheduler, clock: Any) -> None:
    """Successive reviews follow the ladder and stay on its last rung."""
    topic = scheduler.create_topic("Tries")
    gaps = []
    for _ in range(6):
        before = clock()
        topic = scheduler.mark_reviewed(topic.id)
        gaps.append((topic.next_due_at - before).days)
    assert gaps == [3, 7, 14, 30, 30, 30]


def test_review_on_manual_schedule_keeps_date(scheduler: Scheduler, clock: Any) -> None:
    """A manual schedule survives a review; only the counters move."""
    topic = scheduler.create_topic("Red-black trees")
    pinned = clock() + timedelta(days=10)
    scheduler.set_manual_schedule(topic.id, pinned)

    reviewed = scheduler.mark_reviewed(topic.id)

    assert reviewed.stage == 0
    assert reviewed.review_count == 1
    assert reviewed.next_due_at == pinned
    assert reviewed.uses_manual_schedule is True
    assert reviewed.manual_due_at == pinned


def test_review_can_return_to_automatic(scheduler: Scheduler, clock: Any) -> None:
    """return_to_automatic drops the manual date and follows the ladder."""
    topic = scheduler.create_topic("B-trees")
    scheduler.set_manual_schedule(topic.id, clock() + timedelta(days=10))

    reviewed = scheduler.mark_reviewed(topic.id, return_to_automatic=True)

    assert reviewed.stage == 1
    assert reviewed.uses_manual_schedule is False
    assert reviewed.manual_due_at is None
    assert reviewed.next_due_at == clock() + timedelta(days=3)


def test_reset_topic_due_tomorrow(scheduler: Scheduler, clock: Any) -> None:
    """Reset clears progress and makes the topic due tomorrow."""
    topic = scheduler.create_topic("Union-find")
    for _ in range(3):
        topic = scheduler.mark_reviewed(topic.id)

    reset = scheduler.reset_topic(topic.id)

    assert reset.stage == 0
    assert reset.review_count == 0
    assert reset.last_reviewed_at is None
    assert reset.next_due_at == clock() + timedelta(days=1)


def test_clear_manual_schedule_recalculates(scheduler: Scheduler, clock: Any) -> None:
    """Clearing a manual date recomputes it from the last review."""
    topic = scheduler.create_topic("Bloom filters")
    scheduler.mark_reviewed(topic.id)
    reviewed_at = clock()
    scheduler.set_manual_schedule(topic.id, clock() + timedelta(days=20))
    clock.advance(days=2)

    cleared = scheduler.clear_manual_schedule(topic.id)

    assert cleared.uses_manual_schedule is False
    assert cleared.manual_due_at is None
    assert cleared.next_due_at == reviewed_at + timedelta(days=3)


def test_clear_manual_schedule_can_keep_date(scheduler: Scheduler, clock: Any) -> None:
    """recalculate=False keeps the pinned date as an automatic one."""
    topic = scheduler.create_topic("Skip lists")
    pinned = clock() + timedelta(days=20)
    scheduler.set_manual_schedule(topic.id, pinned)

    cleared = scheduler.clear_manual_schedule(topic.id, recalculate=False)

    assert cleared.uses_manual_schedule is False
    assert cleared.next_due_at == pinned


def test_reschedule_automatic_is_one_off(scheduler: Scheduler, clock: Any) -> None:
    """An automatic reschedule moves the date but the next review follows the ladder."""
    topic = scheduler.create_topic("Segment trees")
    moved = scheduler.reschedule_to(topic.id, clock() + timedelta(days=5), manual=False)
    assert moved.uses_manual_schedule is False
    assert moved.manual_due_at is None

    reviewed = scheduler.mark_reviewed(topic.id)
    assert reviewed.next_due_at == clock() + timedelta(days=3)


def test_unknown_topic_raises(scheduler: Scheduler) -> None:
    """Operations on an unknown id raise TopicNotFoundError."""
    with pytest.raises(TopicNotFoundError) as exc_info:
        scheduler.mark_reviewed("missing")
    assert exc_info.value.topic_id == "missing"
    with pytest.raises(TopicNotFoundError):
        scheduler.reset_topic("missing")
    with pytest.raises(TopicNotFoundError):
        scheduler.delete_topic("missing")


def test_mutations_schedule_reminders(
    scheduler: Scheduler, notifier: LogNotifier, clock: Any
) -> None:
    """Create and review keep the reminder at next_due_at."""
    topic = scheduler.create_topic("KMP")
    assert notifier.reminders[topic.id] == clock() + timedelta(days=1)
    reviewed = scheduler.mark_reviewed(topic.id)
    assert notifier.reminders[topic.id] == reviewed.next_due_at


def test_mutations_enqueue_sync(scheduler: Scheduler, queue: SyncQueueDB) -> None:
    """Every mutation queues one update_topic operation."""
    topic = scheduler.create_topic("Rabin-Karp")
    scheduler.mark_reviewed(topic.id)
    items = queue.peek_pending()
    assert len(items) == 2
    assert all(i.kind == SyncOperationKind.UPDATE_TOPIC for i in items)
    assert all(i.payload == {"topic_id": topic.id} for i in items)


def test_notification_failure_does_not_undo_mutation(
    topic_db: TopicDB, queue: SyncQueueDB, clock: Any
) -> None:
    """A failing reminder collaborator is logged; the topic is still stored."""

    class _BrokenNotifier:
        def schedule_reminder(self, topic_id: str, when: datetime) -> None:
            raise RuntimeError("notification service down")

        def cancel_reminder(self, topic_id: str) -> None:
            raise RuntimeError("notification service down")

        def show(self, title: str, body: str) -> None:
            return

    scheduler = Scheduler(topic_db, notifier=_BrokenNotifier(), sync_queue=queue, clock=clock)
    topic = scheduler.create_topic("Tarjan SCC")
    assert topic_db.get(topic.id) is not None
    scheduler.mark_reviewed(topic.id)
    scheduler.delete_topic(topic.id)
    assert topic_db.get(topic.id) is None


def test_delete_topic_replaces_queued_ops(
    scheduler: Scheduler, queue: SyncQueueDB, notifier: LogNotifier
) -> None:
    """Deleting drops the topic's queued updates and queues one deletion."""
    topic = scheduler.create_topic("Fenwick tree")
    other = scheduler.create_topic("Suffix array")
    scheduler.mark_reviewed(topic.id)

    scheduler.delete_topic(topic.id)

    assert topic.id not in notifier.reminders
    remaining = queue.peek_pending()
    kinds = [(i.kind, i.payload["topic_id"]) for i in remaining]
    assert (SyncOperationKind.UPDATE_TOPIC, topic.id) not in kinds
    assert (SyncOperationKind.DELETE_TOPIC, topic.id) in kinds
    assert (SyncOperationKind.UPDATE_TOPIC, other.id) in kinds


def _put(topic_db: TopicDB, topic_id: str, due: datetime) -> None:
    topic_db.upsert(
        Topic(
            id=topic_id,
            title=topic_id,
            created_at=JAN_1,
            next_due_at=due,
            last_modified_at=JAN_1,
        )
    )


@pytest.fixture
def mid_january(topic_db: TopicDB, clock: Any) -> datetime:
    """Four topics: overdue, due today, upcoming, beyond the window."""
    clock.now = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
    _put(topic_db, "overdue", datetime(2024, 1, 5, tzinfo=timezone.utc))
    _put(topic_db, "today", datetime(2024, 1, 10, 8, 0, tzinfo=timezone.utc))
    _put(topic_db, "upcoming", datetime(2024, 1, 12, tzinfo=timezone.utc))
    _put(topic_db, "beyond", datetime(2024, 2, 1, tzinfo=timezone.utc))
    return clock.now


def test_due_includes_overdue(scheduler: Scheduler, mid_january: datetime) -> None:
    """get_due includes overdue topics; the other queries split them."""
    assert [t.id for t in scheduler.get_due()] == ["overdue", "today"]
    assert [t.id for t in scheduler.get_overdue()] == ["overdue"]
    assert [t.id for t in scheduler.get_due_today()] == ["today"]
    assert [t.id for t in scheduler.get_upcoming()] == ["upcoming"]


def test_queries_partition_topics(
    scheduler: Scheduler, topic_db: TopicDB, mid_january: datetime
) -> None:
    """overdue, due today, upcoming and beyond-window are disjoint and cover everything."""
    groups = [
        {t.id for t in scheduler.get_overdue()},
        {t.id for t in scheduler.get_due_today()},
        {t.id for t in scheduler.get_upcoming()},
    ]
    seen = set().union(*groups)
    beyond = {t.id for t in topic_db.get_all()} - seen
    assert beyond == {"beyond"}
    assert sum(len(g) for g in groups) == len(seen)


def test_upcoming_window_is_configurable(scheduler: Scheduler, mid_january: datetime) -> None:
    """A wider window pulls in later topics."""
    ids = [t.id for t in scheduler.get_upcoming(window_days=30)]
    assert ids == ["upcoming", "beyond"]


def test_scheduling_stats(scheduler: Scheduler, mid_january: datetime) -> None:
    """Stats count topics per bucket and per stage."""
    stats = scheduler.scheduling_stats()
    assert stats["total_topics"] == 4
    assert stats["overdue"] == 1
    assert stats["due_today"] == 1
    assert stats["upcoming_7_days"] == 1
    assert stats["stage_distribution"] == {0: 4}
    assert stats["average_reviews"] == 0.0


def test_naive_now_is_read_as_local_time(scheduler: Scheduler, mid_january: datetime) -> None:
    """Naive datetimes are accepted by every query and match their local-aware form."""
    naive = datetime(2024, 1, 10, 12, 0)
    aware = naive.astimezone()

    assert [t.id for t in scheduler.get_due_today(naive)] == [
        t.id for t in scheduler.get_due_today(aware)
    ]
    assert [t.id for t in scheduler.get_overdue(naive)] == [
        t.id for t in scheduler.get_overdue(aware)
    ]
    assert [t.id for t in scheduler.get_upcoming(naive)] == [
        t.id for t in scheduler.get_upcoming(aware)
    ]
    assert scheduler.scheduling_stats(naive) == scheduler.scheduling_stats(aware)


def test_start_of_day_keeps_timezone() -> None:
    """start_of_day truncates to midnight in the same zone."""
    plus_two = timezone(timedelta(hours=2))
    now = datetime(2024, 3, 5, 17, 45, 12, tzinfo=plus_two)
    assert start_of_day(now) == datetime(2024, 3, 5, tzinfo=plus_two)


def test_stage_description(scheduler: Scheduler) -> None:
    """Stage intervals render as readable durations."""
    assert scheduler.stage_description(0) == "1 day"
    assert scheduler.stage_description(1) == "3 days"
    assert scheduler.stage_description(2) == "1 week"
    assert scheduler.stage_description(9) == "1 month"
