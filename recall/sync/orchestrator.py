"""Condition-gated sync orchestrator: queue drain, delta backup, batch upload."""

from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from recall.config import Settings
from recall.core.errors import SyncError, SyncTransientError
from recall.core.scheduler import local_now
from recall.database.preferences import (
    LAST_BACKUP_HASH,
    LAST_INCREMENTAL_SYNC_AT,
    PreferenceStore,
)
from recall.database.sqlite import TopicDB
from recall.database.sync_queue import SyncQueueDB
from recall.models import (
    BatchUploadResult,
    NetworkType,
    SyncOperationKind,
    SyncOutcome,
    SyncQueueItem,
    SyncReport,
    Topic,
)
from recall.models.sync import EPOCH
from recall.sync.backend import RemoteBackend
from recall.sync.conditions import DeviceConditions, is_in_quiet_hours
from recall.sync.notifications import Notifier

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
BACKUP_PREFIX = "backup_"
BATCH_PREFIX = "batch_"


def build_snapshot(topics: list[Topic], settings: dict[str, Any]) -> dict[str, Any]:
    """Hashable snapshot of all topics and exported preferences."""
    return {
        "version": SNAPSHOT_VERSION,
        "topics": [t.model_dump(mode="json") for t in sorted(topics, key=lambda t: t.id)],
        "settings": settings,
    }


def compute_content_hash(snapshot: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of a snapshot."""
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SyncOrchestrator:
    """Keeps the remote backup consistent with local state.

    One pass drains the durable queue, evicts operations past their retry
    budget, then runs a delta-gated full backup. Conflict policy is
    last-write-wins: every backup fully supersedes the previous remote
    snapshot. Re-attempt scheduling belongs to the trigger sources; nothing
    here retries on its own.

    Each queued operation is confirmed by its own forced snapshot upload, so
    a pass costs one upload per drained item (bounded by
    ``queue_batch_limit``) plus at most one trailing backup. Identical
    snapshots share a blob name and overwrite each other remotely.

    A pass never raises: backend or storage errors become retry counts on
    the queue rows or a FAILED report, and ``is_syncing`` is always cleared
    when the pass ends.
    """

    def __init__(
        self,
        topic_db: TopicDB,
        queue: SyncQueueDB,
        preferences: PreferenceStore,
        backend: RemoteBackend,
        conditions: DeviceConditions,
        settings: Settings,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = local_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._db = topic_db
        self._queue = queue
        self._prefs = preferences
        self._backend = backend
        self._conditions = conditions
        self._settings = settings
        self._notifier = notifier
        self._clock = clock
        self._sleep = sleep

    # ---- Gating ----

    def should_sync(self, now: Optional[datetime] = None) -> bool:
        """Return True only if every sync precondition holds."""
        prefs = self._prefs.load_sync_preferences(self._settings)
        current = now or self._clock()

        if not prefs.auto_sync_enabled:
            logger.info("Sync skipped: auto-sync is disabled")
            return False
        if not self._backend.is_authenticated():
            logger.info("Sync skipped: remote backend not authenticated")
            return False

        battery = self._conditions.battery_percent()
        if battery is not None and battery < prefs.min_battery_percent:
            logger.info("Sync skipped: battery too low (%d%%)", battery)
            return False
        if self._conditions.is_power_saving():
            logger.info("Sync skipped: power saving mode is on")
            return False

        if prefs.wifi_only and self._conditions.network_type() != NetworkType.WIFI:
            logger.info("Sync skipped: Wi-Fi required but not connected")
            return False

        if prefs.quiet_hours_enabled and is_in_quiet_hours(
            current.hour, prefs.quiet_hours_start, prefs.quiet_hours_end
        ):
            logger.info(
                "Sync skipped: in quiet hours (%02d:00-%02d:00)",
                prefs.quiet_hours_start,
                prefs.quiet_hours_end,
            )
            return False

        return True

    # ---- Full sync ----

    def perform_sync(self) -> SyncReport:
        """Drain the queue, evict exhausted operations, then back up if changed.

        Never raises for transient failures; they are recorded on the queue
        rows and summarized in the returned report.
        """
        now = self._clock()
        if self._sync_in_progress(now):
            logger.info("Sync already in progress")
            return SyncReport(outcome=SyncOutcome.ALREADY_SYNCING)
        if not self.should_sync(now):
            return SyncReport(outcome=SyncOutcome.SKIPPED)

        logger.info("Starting sync")
        self._queue.write_status(last_sync_attempt_at=now, is_syncing=True)
        try:
            report = self._run_sync_pass()
        finally:
            if self._queue.read_status().is_syncing:
                self._queue.write_status(is_syncing=False)
        self._notify(report)
        return report

    def _run_sync_pass(self) -> SyncReport:
        succeeded = failed = abandoned = 0
        try:
            pending = self._queue.peek_pending(limit=self._settings.queue_batch_limit)
            if pending:
                logger.info("Processing %d pending sync operations", len(pending))
            for item in pending:
                try:
                    self._process_queue_item(item)
                except SyncTransientError as e:
                    logger.warning("Sync operation %s failed: %s", item.id, e)
                    self._queue.increment_retry(item.id, str(e))
                    failed += 1
                except Exception as e:
                    logger.exception("Sync operation %s raised unexpectedly", item.id)
                    self._queue.increment_retry(item.id, f"{type(e).__name__}: {e}")
                    failed += 1
                else:
                    self._queue.remove(item.id)
                    succeeded += 1

            abandoned = self._queue.evict_exceeding(self._settings.max_retries)
            uploaded = self._backup_if_changed()
        except SyncError as e:
            logger.error("Sync failed: %s", e)
            return _failed_report(succeeded, failed, abandoned, str(e))
        except Exception as e:
            logger.exception("Sync failed unexpectedly")
            return _failed_report(succeeded, failed, abandoned, f"{type(e).__name__}: {e}")

        self._queue.write_status(last_successful_sync_at=self._clock(), is_syncing=False)
        logger.info(
            "Sync complete: %d succeeded, %d failed, %d abandoned", succeeded, failed, abandoned
        )
        return SyncReport(
            outcome=SyncOutcome.COMPLETED,
            succeeded=succeeded,
            failed=failed,
            abandoned=abandoned,
            backup_uploaded=uploaded,
        )

    def _process_queue_item(self, item: SyncQueueItem) -> None:
        # Targeted remote deltas do not exist: every kind is satisfied by a
        # full-state upload, which also reflects updates and deletions.
        if item.kind in (
            SyncOperationKind.FULL_BACKUP,
            SyncOperationKind.UPDATE_TOPIC,
            SyncOperationKind.DELETE_TOPIC,
        ):
            self._upload_full_backup(force=True)
        else:
            logger.warning("Unknown sync operation: %s", item.kind)

    def _backup_if_changed(self) -> bool:
        return self._upload_full_backup(force=False)

    def _upload_full_backup(self, force: bool) -> bool:
        """Upload the current snapshot. Returns False when skipped as unchanged.

        Raises:
            SyncTransientError: If the backend rejects the upload.
        """
        snapshot = build_snapshot(self._db.get_all(), self._prefs.export_settings())
        content_hash = compute_content_hash(snapshot)
        if not force and self._prefs.get(LAST_BACKUP_HASH) == content_hash:
            logger.info("No changes detected, skipping backup")
            return False

        payload = dict(snapshot, exported_at=datetime.now(timezone.utc).isoformat())
        name = f"{BACKUP_PREFIX}{content_hash[:16]}.json"
        if not self._safe_upload(name, _encode(payload)):
            raise SyncTransientError(f"Upload of {name} failed")

        self._prefs.set(LAST_BACKUP_HASH, content_hash)
        logger.info("Backup %s uploaded (%d topics)", name, len(snapshot["topics"]))
        return True

    # ---- Batch / incremental ----

    def perform_batch_upload(self, items: list[dict[str, Any]]) -> BatchUploadResult:
        """Upload items in fixed-size chunks, one blob per chunk.

        A failed chunk does not stop later chunks. A short delay separates
        chunks to stay under remote rate limits.
        """
        result = BatchUploadResult(total=len(items))
        if not items:
            return result

        size = max(1, self._settings.upload_chunk_size)
        logger.info("Batch uploading %d items in chunks of %d", len(items), size)
        stamp = int(time.time() * 1000)
        for start in range(0, len(items), size):
            if start:
                self._sleep(self._settings.chunk_delay_seconds)
            chunk = items[start : start + size]
            result.chunks += 1
            payload = {
                "type": "batch",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "items": chunk,
            }
            name = f"{BATCH_PREFIX}{stamp}_{result.chunks:03d}.json"
            if self._safe_upload(name, _encode(payload)):
                result.succeeded += len(chunk)
            else:
                logger.warning("Chunk %d failed", result.chunks)
                result.failed_chunks += 1

        logger.info("Batch upload complete: %d/%d items", result.succeeded, result.total)
        return result

    def changed_topics(self) -> list[Topic]:
        """Topics modified or reviewed since the last incremental sync."""
        since = self._prefs.get_datetime(LAST_INCREMENTAL_SYNC_AT) or EPOCH
        return self._db.query_modified_since(since)

    def perform_incremental_sync(self) -> SyncReport:
        """Upload only topics changed since the stored timestamp.

        Independent of the queue. The timestamp advances to the start of
        this pass only when every chunk was uploaded.
        """
        now = self._clock()
        if self._sync_in_progress(now):
            return SyncReport(outcome=SyncOutcome.ALREADY_SYNCING)
        if not self.should_sync(now):
            return SyncReport(outcome=SyncOutcome.SKIPPED)

        self._queue.write_status(last_sync_attempt_at=now, is_syncing=True)
        try:
            changed = self.changed_topics()
            if not changed:
                logger.info("No changes to sync")
                result = BatchUploadResult()
            else:
                logger.info("Syncing %d changed topics", len(changed))
                result = self.perform_batch_upload([t.model_dump(mode="json") for t in changed])
        except Exception as e:
            logger.exception("Incremental sync failed")
            return SyncReport(outcome=SyncOutcome.FAILED, error=f"{type(e).__name__}: {e}")
        finally:
            if self._queue.read_status().is_syncing:
                self._queue.write_status(is_syncing=False)

        if not result.complete:
            report = SyncReport(
                outcome=SyncOutcome.FAILED,
                succeeded=result.succeeded,
                failed=result.total - result.succeeded,
                error=f"{result.failed_chunks} of {result.chunks} chunks failed",
            )
            self._notify(report)
            return report

        self._prefs.set_datetime(LAST_INCREMENTAL_SYNC_AT, now)
        self._queue.write_status(last_successful_sync_at=self._clock(), is_syncing=False)
        logger.info("Incremental sync complete")
        return SyncReport(
            outcome=SyncOutcome.COMPLETED,
            succeeded=result.succeeded,
            backup_uploaded=result.succeeded > 0,
        )

    # ---- Queue entry point ----

    def queue_sync(
        self,
        kind: SyncOperationKind,
        payload: Optional[dict[str, Any]] = None,
        priority: int = 0,
    ) -> int:
        """Queue a sync operation for the next pass. Returns the queue id."""
        item = SyncQueueItem(
            kind=kind, payload=payload or {}, priority=priority, created_at=self._clock()
        )
        item_id = self._queue.enqueue(item)
        logger.info("Queued sync operation %s", kind.value)
        return item_id

    # ---- Helpers ----

    def _sync_in_progress(self, now: datetime) -> bool:
        status = self._queue.read_status()
        if not status.is_syncing:
            return False
        stale_after = timedelta(minutes=self._settings.stale_sync_minutes)
        if now - status.last_sync_attempt_at >= stale_after:
            logger.warning(
                "Previous sync started at %s never finished; taking over",
                status.last_sync_attempt_at.isoformat(),
            )
            return False
        return True

    def _safe_upload(self, name: str, data: bytes) -> bool:
        try:
            return self._backend.upload_blob(name, data)
        except Exception as e:
            logger.warning("Backend raised during upload of %s: %r", name, e)
            return False

    def _notify(self, report: SyncReport) -> None:
        if self._notifier is None:
            return
        prefs = self._prefs.load_sync_preferences(self._settings)
        try:
            if report.outcome == SyncOutcome.FAILED and report.failed == 0 and not report.abandoned:
                self._notifier.show("Sync Error", report.error or "Sync failed. Will retry later.")
            elif report.failed or report.abandoned or report.outcome == SyncOutcome.FAILED:
                body = f"Failed to sync {report.failed} items. Will retry later."
                if report.abandoned:
                    body += f" {report.abandoned} items were dropped after repeated failures."
                self._notifier.show("Sync Error", body)
            elif not prefs.silent_sync:
                self._notifier.show("Sync Complete", "Your data has been backed up successfully")
        except Exception as e:
            logger.warning("Failed to show sync notification: %s", e)


def _failed_report(succeeded: int, failed: int, abandoned: int, error: str) -> SyncReport:
    return SyncReport(
        outcome=SyncOutcome.FAILED,
        succeeded=succeeded,
        failed=failed,
        abandoned=abandoned,
        error=error,
    )


def _encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
