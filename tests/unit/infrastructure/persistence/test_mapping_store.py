"""Tests for SqlAlchemyMappingStore against a real SQLite database."""

import asyncio
from pathlib import Path

import pytest
from sqlalchemy import func, select

from tracksync.config import DatabaseSettings
from tracksync.domain.entities import (
    BulkJob,
    ChangeEventType,
    MappingChangeEvent,
    TrackFileMapping,
)
from tracksync.domain.exceptions import StoreWriteError
from tracksync.infrastructure.persistence import (
    Database,
    InProcessChangeFeed,
    SqlAlchemyMappingStore,
)
from tracksync.infrastructure.persistence.models import TrackFileMappingModel

LINK = "https://download.real-debrid.com/d/ABC/01%20Midnight%20City.flac"


def _mapping(direct_link: str | None = LINK, **kwargs: object) -> TrackFileMapping:
    fields: dict[str, object] = {
        "track_id": "t1",
        "track_title": "Midnight City",
        "file_path": "/M83 - Hurry Up/01 Midnight City.flac",
        "file_name": "01 Midnight City.flac",
        "file_id": 1,
        "source_name": "real-debrid",
    }
    fields.update(kwargs)
    return TrackFileMapping(direct_link=direct_link, **fields)  # type: ignore[arg-type]


async def _row_count(database: Database) -> int:
    async with database.session_scope() as session:
        return int(
            await session.scalar(select(func.count()).select_from(TrackFileMappingModel)) or 0
        )


@pytest.fixture
def events(change_feed: InProcessChangeFeed) -> list[MappingChangeEvent]:
    """Every event the store publishes."""
    received: list[MappingChangeEvent] = []
    change_feed.subscribe(received.append)
    return received


class TestPut:
    """Test put() upsert semantics."""

    async def test_insert_then_read(self, store: SqlAlchemyMappingStore) -> None:
        """A written row reads back with id and aware timestamps."""
        stored = await store.put(_mapping())

        fetched = await store.get("t1")

        assert fetched is not None
        assert fetched.id == stored.id
        assert fetched.direct_link == LINK
        assert fetched.file_id == 1
        assert fetched.is_synced
        assert fetched.updated_at.tzinfo is not None

    async def test_get_unknown_track(self, store: SqlAlchemyMappingStore) -> None:
        """No row, no mapping."""
        assert await store.get("nope") is None

    async def test_put_is_idempotent(
        self, store: SqlAlchemyMappingStore, database: Database
    ) -> None:
        """Writing the same track twice keeps one row."""
        first = await store.put(_mapping())
        second = await store.put(_mapping())

        assert await _row_count(database) == 1
        assert first.id == second.id

    async def test_null_link_never_overwrites_link(self, store: SqlAlchemyMappingStore) -> None:
        """A stale pending write keeps the stored link and file info."""
        await store.put(_mapping())

        stored = await store.put(
            _mapping(direct_link=None, file_path="/other/02 Reunion.flac", file_id=2)
        )

        assert stored.direct_link == LINK
        assert stored.file_id == 1
        assert stored.file_path == "/M83 - Hurry Up/01 Midnight City.flac"

    async def test_link_replaces_null(self, store: SqlAlchemyMappingStore) -> None:
        """A pending row is completed by a later write with a link."""
        await store.put(_mapping(direct_link=None))

        stored = await store.put(_mapping())

        assert stored.direct_link == LINK

    async def test_newer_link_wins(self, store: SqlAlchemyMappingStore) -> None:
        """Last writer wins between two links."""
        await store.put(_mapping())

        stored = await store.put(_mapping(direct_link="https://cdn.example/new.flac"))

        assert stored.direct_link == "https://cdn.example/new.flac"

    async def test_concurrent_puts_single_row(
        self, store: SqlAlchemyMappingStore, database: Database
    ) -> None:
        """Two writers racing on one track still leave one row."""
        await asyncio.gather(
            store.put(_mapping(direct_link="https://a.example/1.flac", source_name="squidwtf")),
            store.put(_mapping(direct_link="https://b.example/1.flac", source_name="monochrome")),
        )

        assert await _row_count(database) == 1
        stored = await store.get("t1")
        assert stored is not None
        assert stored.direct_link in {"https://a.example/1.flac", "https://b.example/1.flac"}

    async def test_write_failure_raises_store_error(self, tmp_path: Path) -> None:
        """Driver errors surface as StoreWriteError."""
        db = Database(DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}"))
        try:
            with pytest.raises(StoreWriteError):
                await SqlAlchemyMappingStore(db.session_factory).put(_mapping())
        finally:
            await db.close()


class TestBatchAndLinks:
    """Test get_many() and set_direct_link()."""

    async def test_get_many(self, store: SqlAlchemyMappingStore) -> None:
        """Only known tracks come back."""
        await store.put(_mapping())
        await store.put(_mapping(direct_link=None, track_id="t2", track_title="Reunion"))

        found = await store.get_many(["t1", "t2", "t3"])

        assert {m.track_id: m.is_synced for m in found} == {"t1": True, "t2": False}

    async def test_get_many_empty(self, store: SqlAlchemyMappingStore) -> None:
        """Empty input skips the query."""
        assert await store.get_many([]) == []

    async def test_set_direct_link(self, store: SqlAlchemyMappingStore) -> None:
        """A pending row gets its link."""
        await store.put(_mapping(direct_link=None))

        updated = await store.set_direct_link("t1", LINK)

        assert updated is not None
        assert updated.direct_link == LINK
        assert updated.file_name == "01 Midnight City.flac"

    async def test_set_direct_link_missing_row(self, store: SqlAlchemyMappingStore) -> None:
        """No row to complete returns None."""
        assert await store.set_direct_link("t1", LINK) is None


class TestChangeEvents:
    """Test events published after writes."""

    async def test_insert_update_delete(
        self, store: SqlAlchemyMappingStore, events: list[MappingChangeEvent]
    ) -> None:
        """Each committed write publishes one event."""
        await store.put(_mapping(direct_link=None))
        await store.set_direct_link("t1", LINK)
        assert await store.delete("t1") is True

        assert [(e.event_type, e.direct_link) for e in events] == [
            (ChangeEventType.INSERT, None),
            (ChangeEventType.UPDATE, LINK),
            (ChangeEventType.DELETE, None),
        ]

    async def test_no_event_without_change(
        self, store: SqlAlchemyMappingStore, events: list[MappingChangeEvent]
    ) -> None:
        """Nothing deleted, nothing completed: no events."""
        assert await store.delete("t1") is False
        assert await store.set_direct_link("t1", LINK) is None
        assert events == []

    async def test_monotonic_write_publishes_stored_link(
        self, store: SqlAlchemyMappingStore, events: list[MappingChangeEvent]
    ) -> None:
        """The event carries what is stored, not the rejected null."""
        await store.put(_mapping())
        await store.put(_mapping(direct_link=None))

        assert events[-1].event_type == ChangeEventType.UPDATE
        assert events[-1].direct_link == LINK


class TestGroupMappings:
    """Test album group mappings."""

    async def test_first_writer_wins(self, store: SqlAlchemyMappingStore) -> None:
        """A second bulk job for the same album reuses the first mapping."""
        first = await store.get_or_create_group_mapping(
            album_id="alb-1",
            album_title="Hurry Up, We're Dreaming",
            artist_name="M83",
            bulk_job=BulkJob(job_id="RD1", title="M83 - Hurry Up [FLAC]", source_name="real-debrid"),
        )
        second = await store.get_or_create_group_mapping(
            album_id="alb-1",
            album_title="Hurry Up, We're Dreaming",
            artist_name="M83",
            bulk_job=BulkJob(job_id="RD2", title="M83 - Hurry Up [MP3]", source_name="real-debrid"),
        )

        assert first == second
        group = await store.get_group_mapping("alb-1")
        assert group is not None
        assert group.job_id == "RD1"

    async def test_rows_reference_group(self, store: SqlAlchemyMappingStore) -> None:
        """Track rows keep their group mapping id."""
        group_id = await store.get_or_create_group_mapping(
            album_id="alb-1",
            album_title="Hurry Up, We're Dreaming",
            artist_name="M83",
            bulk_job=BulkJob(job_id="RD1", title="M83 - Hurry Up", source_name="real-debrid"),
        )
        await store.put(_mapping(group_mapping_id=group_id))

        stored = await store.get("t1")

        assert stored is not None
        assert stored.group_mapping_id == group_id

    async def test_unknown_album(self, store: SqlAlchemyMappingStore) -> None:
        """No mapping for an album never synced."""
        assert await store.get_group_mapping("alb-9") is None
