"""Shared fixtures for tracksync tests.

Hey future me - everything time-based in tracksync takes an injectable clock and sleep, and
FakeTime is the one place that fakes both: sleep() just moves the clock forward, so a
"120 second" polling loop finishes instantly and deterministically.
"""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest

from tracksync.application.services.sync_state import SyncStateBroadcaster
from tracksync.config import DatabaseSettings, SyncSettings
from tracksync.domain.entities import (
    AudioFile,
    BulkJob,
    CandidateStatus,
    JobHandle,
    StreamCandidate,
    Track,
)
from tracksync.domain.ports import ISourceAdapter
from tracksync.domain.value_objects import AudioQuality
from tracksync.infrastructure.integrations.http_pool import HttpClientPool
from tracksync.infrastructure.persistence import (
    Database,
    InProcessChangeFeed,
    SqlAlchemyMappingStore,
)


class FakeTime:
    """Monotonic clock that only moves when someone sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeSourceAdapter(ISourceAdapter):
    """Scripted source adapter recording every call."""

    def __init__(
        self,
        name: str,
        candidates: list[StreamCandidate] | None = None,
        error: Exception | None = None,
        poll_results: list[StreamCandidate] | None = None,
        available: bool | Exception = True,
        call_log: list[str] | None = None,
    ) -> None:
        self._name = name
        self.candidates = candidates or []
        self.error = error
        self.poll_results = list(poll_results or [])
        self.available = available
        self.call_log = call_log if call_log is not None else []
        self.search_calls = 0
        self.poll_calls = 0

    @property
    def source_name(self) -> str:
        return self._name

    async def search(self, track: Track, quality: AudioQuality) -> list[StreamCandidate]:
        self.search_calls += 1
        self.call_log.append(self._name)
        if self.error is not None:
            raise self.error
        return list(self.candidates)

    async def poll(self, job: JobHandle) -> StreamCandidate:
        self.poll_calls += 1
        # Last scripted result repeats forever
        if len(self.poll_results) > 1:
            return self.poll_results.pop(0)
        return self.poll_results[0]

    async def is_available(self) -> bool:
        if isinstance(self.available, Exception):
            raise self.available
        return self.available


def ready_candidate(
    source: str,
    url: str = "https://cdn.example/stream.flac",
    matched_text: str | None = None,
    **kwargs: Any,
) -> StreamCandidate:
    """READY candidate for tests."""
    return StreamCandidate(
        source_name=source,
        status=CandidateStatus.READY,
        stream_url=url,
        progress=100.0,
        matched_text=matched_text,
        **kwargs,
    )


def pending_candidate(
    source: str,
    status: CandidateStatus = CandidateStatus.QUEUED,
    progress: float = 0.0,
    job_id: str = "job-1",
    **kwargs: Any,
) -> StreamCandidate:
    """Pending candidate with a job handle."""
    return StreamCandidate(
        source_name=source,
        status=status,
        progress=progress,
        job=JobHandle(source_name=source, job_id=job_id, file_ids=(1,)),
        **kwargs,
    )


@pytest.fixture(autouse=True)
def _reset_singletons() -> None:
    """Process-wide singletons must not leak between tests."""
    SyncStateBroadcaster.reset_instance()
    HttpClientPool.reset()


@pytest.fixture
def track() -> Track:
    """The Midnight City track used across scenarios."""
    return Track(
        id="t1",
        title="Midnight City",
        artist="M83",
        album="Hurry Up, We're Dreaming",
        album_id="alb-1",
        duration=243,
    )


@pytest.fixture
def single_track() -> Track:
    """Track without album context."""
    return Track(id="t2", title="Reunion", artist="M83")


@pytest.fixture
def album_files() -> tuple[AudioFile, ...]:
    """Audio files of the album torrent."""
    return (
        AudioFile(id=1, path="/M83 - Hurry Up/01 Midnight City.flac"),
        AudioFile(id=2, path="/M83 - Hurry Up/02 Reunion.flac"),
    )


@pytest.fixture
def bulk_job() -> BulkJob:
    """Album torrent on the debrid service."""
    return BulkJob(
        job_id="RD1",
        title="M83 - Hurry Up, We're Dreaming [FLAC]",
        source_name="real-debrid",
    )


@pytest.fixture
def fake_time() -> FakeTime:
    """Fake clock + sleep pair."""
    return FakeTime()


@pytest.fixture
def sync_settings() -> SyncSettings:
    """Default sync timing (1s poll, 10s stall, 120s ceiling)."""
    return SyncSettings()


@pytest.fixture
def make_adapter() -> Callable[..., FakeSourceAdapter]:
    """Factory for scripted source adapters."""
    return FakeSourceAdapter


@pytest.fixture
def make_ready() -> Callable[..., StreamCandidate]:
    """Factory for READY candidates."""
    return ready_candidate


@pytest.fixture
def make_pending() -> Callable[..., StreamCandidate]:
    """Factory for pending candidates."""
    return pending_candidate


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """File-backed SQLite database with tables created."""
    db = Database(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'tracksync.db'}"))
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def change_feed() -> InProcessChangeFeed:
    """In-process change feed."""
    return InProcessChangeFeed()


@pytest.fixture
def store(database: Database, change_feed: InProcessChangeFeed) -> SqlAlchemyMappingStore:
    """Mapping store publishing to the change feed."""
    return SqlAlchemyMappingStore(database.session_factory, change_feed)


@pytest.fixture
def broadcaster() -> SyncStateBroadcaster:
    """Fresh broadcaster (not the process-wide one)."""
    return SyncStateBroadcaster()
