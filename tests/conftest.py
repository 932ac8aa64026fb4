"""Global fixtures: temp DB, fixed clock, fake backend and device conditions."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from recall.config import Settings
from recall.core.scheduler import Scheduler
from recall.database.preferences import PreferenceStore
from recall.database.sqlite import TopicDB
from recall.database.sync_queue import SyncQueueDB
from recall.models import BlobMetadata, NetworkType, Topic
from recall.sync.notifications import LogNotifier
from recall.sync.orchestrator import SyncOrchestrator


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeBackend:
    """In-memory remote; upload calls listed in fail_calls (1-based) return False."""

    def __init__(self, authenticated: bool = True, fail_calls: Optional[set[int]] = None) -> None:
        self.authenticated = authenticated
        self.fail_calls = fail_calls or set()
        self.fail_all = False
        self.upload_calls = 0
        self.uploads: list[str] = []
        self.blobs: dict[str, bytes] = {}

    def is_authenticated(self) -> bool:
        return self.authenticated

    def upload_blob(self, name: str, data: bytes) -> bool:
        self.upload_calls += 1
        if self.fail_all or self.upload_calls in self.fail_calls:
            return False
        self.uploads.append(name)
        self.blobs[name] = data
        return True

    def list_blobs(self, query: str = "") -> list[BlobMetadata]:
        return [
            BlobMetadata(
                id=name,
                name=name,
                size=len(data),
                created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
            for name, data in self.blobs.items()
            if query in name
        ]

    def download_blob(self, blob_id: str) -> Optional[bytes]:
        return self.blobs.get(blob_id)

    def delete_blob(self, blob_id: str) -> bool:
        return self.blobs.pop(blob_id, None) is not None


class FakeConditions:
    def __init__(
        self,
        battery: Optional[int] = 80,
        power_saving: bool = False,
        network: NetworkType = NetworkType.WIFI,
    ) -> None:
        self.battery = battery
        self.power_saving = power_saving
        self.network = network

    def battery_percent(self) -> Optional[int]:
        return self.battery

    def is_power_saving(self) -> bool:
        return self.power_saving

    def network_type(self) -> NetworkType:
        return self.network


@pytest.fixture
def temp_db_path() -> Path:
    """Temporary SQLite path (cleaned up after test)."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = Path(f.name)
    yield path
    if path.exists():
        path.unlink(missing_ok=True)


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed at 2024-01-01 12:00 UTC (outside default quiet hours)."""
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(temp_db_path: Path, tmp_path: Path) -> Settings:
    return Settings(
        db_path=temp_db_path,
        backup_dir=tmp_path / "remote",
        log_file=tmp_path / "recall.log",
        chunk_delay_seconds=0.0,
    )


@pytest.fixture
def topic_db(temp_db_path: Path) -> TopicDB:
    """Initialized TopicDB with temp path."""
    d = TopicDB(temp_db_path)
    d.init_db()
    return d


@pytest.fixture
def queue(temp_db_path: Path) -> SyncQueueDB:
    q = SyncQueueDB(temp_db_path)
    q.init_db()
    return q


@pytest.fixture
def prefs(temp_db_path: Path) -> PreferenceStore:
    p = PreferenceStore(temp_db_path)
    p.init_db()
    return p


@pytest.fixture
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def conditions() -> FakeConditions:
    return FakeConditions()


@pytest.fixture
def scheduler(
    topic_db: TopicDB, queue: SyncQueueDB, notifier: LogNotifier, clock: FakeClock
) -> Scheduler:
    return Scheduler(topic_db, notifier=notifier, sync_queue=queue, clock=clock)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def orchestrator(
    topic_db: TopicDB,
    queue: SyncQueueDB,
    prefs: PreferenceStore,
    backend: FakeBackend,
    conditions: FakeConditions,
    settings: Settings,
    notifier: LogNotifier,
    clock: FakeClock,
    sleeps: list[float],
) -> SyncOrchestrator:
    return SyncOrchestrator(
        topic_db,
        queue,
        prefs,
        backend,
        conditions,
        settings,
        notifier=notifier,
        clock=clock,
        sleep=sleeps.append,
    )


@pytest.fixture
def sample_topic() -> Topic:
    """Single stage-0 topic due 2024-01-02."""
    return Topic(
        id="topic-1",
        title="Binary search",
        tags=["algorithms"],
        created_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
        next_due_at=datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc),
        last_modified_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
    )
