"""Trigger sources that call into the sync orchestrator.

All of them only decide *when* to call `perform_sync()` (or the incremental
path); the orchestrator itself never schedules re-attempts.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from recall.database.preferences import REVIEWED_COUNT, PreferenceStore
from recall.database.sync_queue import SyncQueueDB
from recall.models import SyncOutcome, SyncReport
from recall.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

MAX_BACKOFF = timedelta(hours=24)


def backoff_delay(
    base: timedelta, failures: int, cap: timedelta = MAX_BACKOFF
) -> timedelta:
    """Exponential backoff: zero without failures, else base * 2**(failures - 1), capped."""
    if failures <= 0:
        return timedelta(0)
    delay = base * (2 ** (failures - 1))
    return min(delay, cap)


def _is_failure(report: SyncReport) -> bool:
    return report.outcome == SyncOutcome.FAILED or report.failed > 0


class PeriodicSyncRunner:
    """Runs `perform_sync()` on a fixed interval in a daemon thread.

    Consecutive failures push the next run out by exponential backoff on top
    of the interval; a clean pass resets the counter.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval: timedelta,
        backoff_base: timedelta = timedelta(minutes=15),
    ) -> None:
        self._orchestrator = orchestrator
        self._interval = interval
        self._backoff_base = backoff_base
        self._failures = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def next_delay(self) -> timedelta:
        return self._interval + backoff_delay(self._backoff_base, self._failures)

    def run_once(self) -> SyncReport:
        report = self._orchestrator.perform_sync()
        if _is_failure(report):
            self._failures += 1
            logger.warning(
                "Periodic sync failed (%d in a row); next attempt in %s",
                self._failures,
                self.next_delay(),
            )
        elif report.outcome == SyncOutcome.COMPLETED:
            self._failures = 0
        return report

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="periodic-sync"
        )
        self._thread.start()
        logger.info("Periodic sync registered (every %s)", self._interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Periodic sync cancelled")

    def _loop(self) -> None:
        while not self._stop.wait(self.next_delay().total_seconds()):
            self.run_once()


def sync_on_resume(
    orchestrator: SyncOrchestrator,
    queue: SyncQueueDB,
    min_interval: timedelta,
    now: Optional[datetime] = None,
) -> Optional[SyncReport]:
    """On app resume, sync if changes are pending or the last success is stale."""
    status = queue.read_status()
    if not status.needs_sync(min_interval, now):
        logger.debug("Resume: last sync is recent and nothing is pending")
        return None
    return orchestrator.perform_sync()


class ReviewCountTrigger:
    """Fires a sync after every `threshold` reviews; the counter survives restarts."""

    def __init__(
        self,
        preferences: PreferenceStore,
        threshold: int,
        on_trigger: Callable[[], SyncReport],
    ) -> None:
        self._prefs = preferences
        self._threshold = max(1, threshold)
        self._on_trigger = on_trigger

    def record_review(self) -> Optional[SyncReport]:
        count = int(self._prefs.get(REVIEWED_COUNT, 0)) + 1
        if count < self._threshold:
            self._prefs.set(REVIEWED_COUNT, count)
            return None
        logger.info("Reviewed count trigger reached: %d/%d", count, self._threshold)
        self._prefs.set(REVIEWED_COUNT, 0)
        return self._on_trigger()
