"""Remote blob store interface and the app-owned folder backend."""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from recall.models import BlobMetadata

logger = logging.getLogger(__name__)


class RemoteBackend(Protocol):
    """Protocol for the remote backup target.

    Every operation reports failure through its return value instead of
    raising, so a flaky network never aborts a sync pass.
    """

    def is_authenticated(self) -> bool:
        ...

    def upload_blob(self, name: str, data: bytes) -> bool:
        ...

    def list_blobs(self, query: str = "") -> list[BlobMetadata]:
        ...

    def download_blob(self, blob_id: str) -> Optional[bytes]:
        ...

    def delete_blob(self, blob_id: str) -> bool:
        ...


class FolderBackend:
    """Stores blobs as files in one app-owned directory.

    Point `root` at a locally mounted cloud drive (or any synced folder) to
    get an off-device backup. The backend counts as authenticated once the
    folder has been connected, i.e. it exists. Blob ids are file names.
    """

    def __init__(self, root: Path, create: bool = False) -> None:
        self._root = Path(root)
        if create:
            self.connect()

    @property
    def root(self) -> Path:
        return self._root

    def connect(self) -> None:
        """Create the app folder (the "sign in" step for a folder target)."""
        self._root.mkdir(parents=True, exist_ok=True)

    def is_authenticated(self) -> bool:
        return self._root.is_dir()

    def upload_blob(self, name: str, data: bytes) -> bool:
        """Write atomically: temp file then rename, so a blob is never half-written."""
        if not self.is_authenticated():
            logger.warning("Upload of %s skipped: remote folder %s not connected", name, self._root)
            return False
        target = self._blob_path(name)
        if target is None:
            return False
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as e:
            logger.warning("Upload of %s failed: %s", name, e)
            tmp.unlink(missing_ok=True)
            return False
        return True

    def list_blobs(self, query: str = "") -> list[BlobMetadata]:
        """List blobs whose name contains query, newest first."""
        if not self.is_authenticated():
            return []
        blobs: list[BlobMetadata] = []
        try:
            for path in self._root.iterdir():
                if not path.is_file() or path.name.startswith("."):
                    continue
                if query and query not in path.name:
                    continue
                stat = path.stat()
                blobs.append(
                    BlobMetadata(
                        id=path.name,
                        name=path.name,
                        size=stat.st_size,
                        created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
        except OSError as e:
            logger.warning("Listing remote folder %s failed: %s", self._root, e)
            return []
        return sorted(blobs, key=lambda b: (b.created_at, b.name), reverse=True)

    def download_blob(self, blob_id: str) -> Optional[bytes]:
        path = self._blob_path(blob_id)
        if path is None or not self.is_authenticated():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning("Download of %s failed: %s", blob_id, e)
            return None

    def delete_blob(self, blob_id: str) -> bool:
        path = self._blob_path(blob_id)
        if path is None or not self.is_authenticated():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.warning("Delete of %s failed: %s", blob_id, e)
            return False
        return True

    def _blob_path(self, name: str) -> Optional[Path]:
        # Blob names are flat; anything that could escape the folder is rejected.
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            logger.warning("Rejected invalid blob name %r", name)
            return None
        return self._root / name
