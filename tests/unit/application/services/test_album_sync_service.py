"""Tests for AlbumSyncService."""

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from tracksync.application.services.album_sync_service import AlbumSyncService
from tracksync.application.services.sync_state import SyncStateBroadcaster
from tracksync.config import SyncSettings
from tracksync.domain.dtos import BulkJobListing
from tracksync.domain.entities import (
    AudioFile,
    BulkJob,
    CandidateStatus,
    StreamCandidate,
    SyncState,
    Track,
    TrackFileMapping,
)
from tracksync.domain.exceptions import ExternalServiceError
from tracksync.infrastructure.persistence import SqlAlchemyMappingStore


def _album_tracks() -> list[Track]:
    return [
        Track(id="t1", title="Midnight City", artist="M83", album_id="alb-1"),
        Track(id="t2", title="Reunion", artist="M83", album_id="alb-1"),
        Track(id="t3", title="Wait", artist="M83", album_id="alb-1"),
    ]


def _ready_for(bulk_job: BulkJob, audio_file: AudioFile) -> StreamCandidate:
    return StreamCandidate(
        source_name="real-debrid",
        status=CandidateStatus.READY,
        stream_url=f"https://rd.example/d/{audio_file.id}",
        progress=100.0,
        bulk_job=bulk_job,
        file=audio_file,
    )


@pytest.fixture
def adapter(bulk_job: BulkJob, album_files: tuple[AudioFile, ...]) -> MagicMock:
    """Bulk adapter whose files are instantly ready."""
    mock = MagicMock()
    mock.source_name = "real-debrid"
    mock.find_bulk_job = AsyncMock(
        return_value=BulkJobListing(job=bulk_job, files=album_files)
    )
    mock.materialize = AsyncMock(side_effect=_ready_for)
    mock.poll = AsyncMock()
    return mock


@pytest.fixture
def service(
    adapter: MagicMock,
    store: SqlAlchemyMappingStore,
    broadcaster: SyncStateBroadcaster,
    sync_settings: SyncSettings,
    fake_time: Any,
) -> AlbumSyncService:
    """Service on the real store with fake time."""
    return AlbumSyncService(
        adapter=adapter,
        store=store,
        broadcaster=broadcaster,
        settings=sync_settings,
        sleep=fake_time.sleep,
        clock=fake_time.clock,
    )


class TestSyncAlbum:
    """Test the album happy path."""

    async def test_syncs_matching_tracks(
        self,
        service: AlbumSyncService,
        adapter: MagicMock,
        store: SqlAlchemyMappingStore,
        broadcaster: SyncStateBroadcaster,
        fake_time: Any,
    ) -> None:
        """Matching files are synced, the track without a file fails."""
        report = await service.sync_album(_album_tracks(), "Hurry Up, We're Dreaming", "M83")

        assert (report.synced, report.already_synced, report.failed) == (2, 0, 1)
        assert report.failed_track_ids == ["t3"]
        assert report.is_complete is False
        adapter.find_bulk_job.assert_awaited_once_with("Hurry Up, We're Dreaming M83", 3)
        # Delay between tracks, not before the first
        assert fake_time.sleeps == [2.0, 2.0]

        midnight = await store.get("t1")
        assert midnight is not None
        assert midnight.direct_link == "https://rd.example/d/1"
        group = await store.get_group_mapping("alb-1")
        assert group is not None
        assert midnight.group_mapping_id == group.id
        assert await store.get("t3") is None

        assert broadcaster.snapshot().synced == frozenset({"t1", "t2"})
        assert broadcaster.snapshot().syncing == frozenset()

    async def test_already_synced_tracks_skipped(
        self,
        service: AlbumSyncService,
        adapter: MagicMock,
        store: SqlAlchemyMappingStore,
    ) -> None:
        """Stored links are reused without a search."""
        for track_id in ("t1", "t2", "t3"):
            await store.put(
                TrackFileMapping(track_id=track_id, direct_link=f"https://cdn.example/{track_id}")
            )

        report = await service.sync_album(_album_tracks(), "Hurry Up, We're Dreaming", "M83")

        assert report.already_synced == 3
        assert report.is_complete
        adapter.find_bulk_job.assert_not_awaited()

    async def test_synced_track_never_shown_syncing_again(
        self,
        service: AlbumSyncService,
        store: SqlAlchemyMappingStore,
        broadcaster: SyncStateBroadcaster,
    ) -> None:
        """States only move forward: a stored track goes straight to synced."""
        await store.put(TrackFileMapping(track_id="t1", direct_link="https://cdn.example/t1"))
        broadcaster.add_synced("t1")
        seen: list[tuple[str, SyncState]] = []
        broadcaster.subscribe(lambda track_id, state: seen.append((track_id, state)))

        report = await service.sync_album(_album_tracks(), "Hurry Up, We're Dreaming", "M83")

        assert report.already_synced == 1
        assert [state for track_id, state in seen if track_id == "t1"] == []
        assert ("t2", SyncState.SYNCING) in seen
        assert broadcaster.is_synced("t1")

    async def test_empty_album(self, service: AlbumSyncService) -> None:
        """No tracks, nothing to do."""
        report = await service.sync_album([], "Hurry Up, We're Dreaming", "M83")
        assert report.total == 0
        assert report.is_complete


class TestSyncAlbumFailures:
    """Test album-level failures."""

    async def test_no_torrent(
        self,
        service: AlbumSyncService,
        adapter: MagicMock,
        broadcaster: SyncStateBroadcaster,
    ) -> None:
        """No usable listing fails every remaining track."""
        adapter.find_bulk_job.return_value = None

        report = await service.sync_album(_album_tracks(), "Hurry Up, We're Dreaming", "M83")

        assert report.failed == 3
        assert report.job_title is None
        assert broadcaster.snapshot().syncing == frozenset()

    async def test_search_error(self, service: AlbumSyncService, adapter: MagicMock) -> None:
        """A source error during the album search is reported, not raised."""
        adapter.find_bulk_job.side_effect = ExternalServiceError("apibay answered 502")

        report = await service.sync_album(_album_tracks(), "Hurry Up, We're Dreaming", "M83")

        assert report.failed == 3
        adapter.materialize.assert_not_awaited()

    async def test_pending_file_becomes_ready(
        self,
        service: AlbumSyncService,
        adapter: MagicMock,
        store: SqlAlchemyMappingStore,
        make_pending: Callable[..., StreamCandidate],
        make_ready: Callable[..., StreamCandidate],
        fake_time: Any,
    ) -> None:
        """A downloading file is polled until its link shows up."""
        adapter.materialize.side_effect = None
        adapter.materialize.return_value = make_pending(
            "real-debrid", status=CandidateStatus.DOWNLOADING, progress=20.0
        )
        adapter.poll.side_effect = [
            make_pending("real-debrid", status=CandidateStatus.DOWNLOADING, progress=60.0),
            make_ready("real-debrid", url="https://rd.example/d/late"),
        ]
        track = Track(id="t1", title="Midnight City", artist="M83")

        report = await service.sync_album([track], "Hurry Up, We're Dreaming", "M83")

        assert report.synced == 1
        assert fake_time.sleeps == [1.5, 1.5]
        stored = await store.get("t1")
        assert stored is not None
        assert stored.direct_link == "https://rd.example/d/late"

    async def test_row_deleted_while_polling_written_again(
        self,
        service: AlbumSyncService,
        adapter: MagicMock,
        store: SqlAlchemyMappingStore,
        broadcaster: SyncStateBroadcaster,
        make_pending: Callable[..., StreamCandidate],
        make_ready: Callable[..., StreamCandidate],
    ) -> None:
        """Synced is only shown when the link actually ends up stored."""
        adapter.materialize.side_effect = None
        adapter.materialize.return_value = make_pending(
            "real-debrid", status=CandidateStatus.DOWNLOADING, progress=20.0
        )

        async def ready_after_delete(_job: Any) -> StreamCandidate:
            await store.delete("t1")
            return make_ready("real-debrid", url="https://rd.example/d/late")

        adapter.poll.side_effect = ready_after_delete
        track = Track(id="t1", title="Midnight City", artist="M83")

        report = await service.sync_album([track], "Hurry Up, We're Dreaming", "M83")

        assert report.synced == 1
        stored = await store.get("t1")
        assert stored is not None
        assert stored.direct_link == "https://rd.example/d/late"
        assert broadcaster.is_synced("t1")

    async def test_stalled_file_fails(
        self,
        service: AlbumSyncService,
        adapter: MagicMock,
        store: SqlAlchemyMappingStore,
        broadcaster: SyncStateBroadcaster,
        make_pending: Callable[..., StreamCandidate],
        fake_time: Any,
    ) -> None:
        """Stuck at 0% past the stall timeout: failed, null row kept."""
        queued = make_pending("real-debrid")
        adapter.materialize.side_effect = None
        adapter.materialize.return_value = queued
        adapter.poll.return_value = queued
        track = Track(id="t1", title="Midnight City", artist="M83")

        report = await service.sync_album([track], "Hurry Up, We're Dreaming", "M83")

        assert report.failed == 1
        assert fake_time.now == pytest.approx(10.5)
        stored = await store.get("t1")
        assert stored is not None
        assert stored.direct_link is None
        assert broadcaster.state_of("t1").value == "idle"

    async def test_dead_file_fails(
        self,
        service: AlbumSyncService,
        adapter: MagicMock,
        make_pending: Callable[..., StreamCandidate],
    ) -> None:
        """A job the backend gave up on fails the track."""
        adapter.materialize.side_effect = None
        adapter.materialize.return_value = make_pending("real-debrid")
        adapter.poll.return_value = StreamCandidate(
            source_name="real-debrid", status=CandidateStatus.DEAD
        )
        track = Track(id="t1", title="Midnight City", artist="M83")

        report = await service.sync_album([track], "Hurry Up, We're Dreaming", "M83")

        assert report.failed_track_ids == ["t1"]
