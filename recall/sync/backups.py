"""Browse and restore full backups stored on the remote backend."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from recall.core.errors import BackupNotFoundError, SyncError
from recall.database.sqlite import TopicDB
from recall.models import BlobMetadata, Topic
from recall.sync.backend import RemoteBackend
from recall.sync.orchestrator import BACKUP_PREFIX

logger = logging.getLogger(__name__)


class BackupService:
    """Restore is last-write-wins: snapshot topics overwrite local rows with the same id."""

    def __init__(self, backend: RemoteBackend, topic_db: TopicDB) -> None:
        self._backend = backend
        self._db = topic_db

    def list_backups(self) -> list[BlobMetadata]:
        """Full backups on the remote, newest first."""
        blobs = self._backend.list_blobs(BACKUP_PREFIX)
        return sorted(
            (b for b in blobs if b.name.startswith(BACKUP_PREFIX)),
            key=lambda b: b.created_at,
            reverse=True,
        )

    def restore(self, blob_id: str) -> int:
        """Load a backup into the local store. Returns the number of topics restored.

        Raises:
            BackupNotFoundError: If the blob cannot be downloaded.
            SyncError: If the blob is not a valid backup snapshot.
        """
        raw = self._backend.download_blob(blob_id)
        if raw is None:
            raise BackupNotFoundError(f"Backup {blob_id} could not be downloaded")
        try:
            data = json.loads(raw.decode("utf-8"))
            topics = [Topic.model_validate(t) for t in data["topics"]]
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise SyncError(f"Backup {blob_id} is not a valid snapshot: {e}") from e
        except ValidationError as e:
            raise SyncError(f"Backup {blob_id} contains invalid topics: {e}") from e

        for topic in topics:
            self._db.upsert(topic)
        logger.info("Restored %d topics from %s", len(topics), blob_id)
        return len(topics)

    def delete(self, blob_id: str) -> bool:
        return self._backend.delete_blob(blob_id)
