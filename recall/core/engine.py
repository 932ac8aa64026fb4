"""Application wiring: one store, queue, scheduler and orchestrator per process."""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from recall.config import Settings, get_settings
from recall.core.scheduler import Scheduler, local_now
from recall.database.preferences import PreferenceStore
from recall.database.sqlite import TopicDB
from recall.database.sync_queue import SyncQueueDB
from recall.models import SyncPreferences, SyncReport, Topic
from recall.sync.backend import FolderBackend, RemoteBackend
from recall.sync.backups import BackupService
from recall.sync.conditions import DeviceConditions, SystemConditions
from recall.sync.notifications import LogNotifier, Notifier
from recall.sync.orchestrator import SyncOrchestrator
from recall.sync.triggers import PeriodicSyncRunner, ReviewCountTrigger, sync_on_resume

logger = logging.getLogger(__name__)


class Engine:
    """Constructs every collaborator once and hands them out by reference.

    Depends on Settings + DB. Tests replace the backend, device conditions,
    notifier or clock through the constructor.
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        settings: Optional[Settings] = None,
        backend: Optional[RemoteBackend] = None,
        conditions: Optional[DeviceConditions] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.settings = settings or get_settings()
        self._clock = clock
        self._db_path = db_path or self.settings.db_path

        self.topics = TopicDB(self._db_path)
        self.topics.init_db()
        self.queue = SyncQueueDB(self._db_path)
        self.queue.init_db()
        self.preferences = PreferenceStore(self._db_path)
        self.preferences.init_db()

        self.backend = backend or FolderBackend(self.settings.backup_dir)
        self.notifier = notifier or LogNotifier()
        self.scheduler = Scheduler(
            self.topics,
            notifier=self.notifier,
            sync_queue=self.queue,
            ladder=self.settings.interval_ladder,
            clock=clock,
        )
        self.orchestrator = SyncOrchestrator(
            self.topics,
            self.queue,
            self.preferences,
            self.backend,
            conditions or SystemConditions(),
            self.settings,
            notifier=self.notifier,
            clock=clock,
        )
        self.backups = BackupService(self.backend, self.topics)
        self._review_trigger = ReviewCountTrigger(
            self.preferences,
            self.sync_preferences().reviewed_count_trigger,
            self.orchestrator.perform_incremental_sync,
        )

    def sync_preferences(self) -> SyncPreferences:
        return self.preferences.load_sync_preferences(self.settings)

    def review(self, topic_id: str, return_to_automatic: bool = False) -> Topic:
        """Mark a topic reviewed and count it toward the review-count sync trigger."""
        topic = self.scheduler.mark_reviewed(topic_id, return_to_automatic=return_to_automatic)
        report = self._review_trigger.record_review()
        if report is not None:
            logger.info("Review-triggered sync: %s", report.outcome.value)
        return topic

    def sync_on_resume(self) -> Optional[SyncReport]:
        return sync_on_resume(
            self.orchestrator,
            self.queue,
            timedelta(minutes=self.settings.resume_sync_after_minutes),
            now=self._clock(),
        )

    def periodic_runner(self) -> PeriodicSyncRunner:
        prefs = self.sync_preferences()
        return PeriodicSyncRunner(
            self.orchestrator,
            interval=timedelta(hours=prefs.sync_interval_hours),
            backoff_base=timedelta(minutes=self.settings.backoff_base_minutes),
        )
