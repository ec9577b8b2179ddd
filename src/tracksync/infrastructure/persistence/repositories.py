"""SQLAlchemy-backed mapping store."""

import logging
import uuid
from collections.abc import Sequence
from typing import Any

from sqlalchemy import and_, case, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracksync.domain.entities import (
    AlbumGroupMapping,
    BulkJob,
    ChangeEventType,
    MappingChangeEvent,
    TrackFileMapping,
)
from tracksync.domain.exceptions import StoreWriteError
from tracksync.domain.ports import IChangeFeed, IMappingStore
from tracksync.infrastructure.persistence.models import (
    AlbumGroupMappingModel,
    TrackFileMappingModel,
    ensure_utc_aware,
    utc_now,
)
from tracksync.infrastructure.persistence.retry import with_db_retry

logger = logging.getLogger(__name__)

# Columns overwritten on conflict (last writer wins, subject to the monotonic link rule)
_UPSERT_COLUMNS = (
    "group_mapping_id",
    "track_title",
    "file_id",
    "file_path",
    "file_name",
    "direct_link",
    "source_name",
)


def _to_entity(model: TrackFileMappingModel) -> TrackFileMapping:
    return TrackFileMapping(
        id=model.id,
        track_id=model.track_id,
        group_mapping_id=model.group_mapping_id,
        track_title=model.track_title,
        file_id=model.file_id,
        file_path=model.file_path,
        file_name=model.file_name,
        direct_link=model.direct_link,
        source_name=model.source_name,
        created_at=ensure_utc_aware(model.created_at),
        updated_at=ensure_utc_aware(model.updated_at),
    )


def _group_to_entity(model: AlbumGroupMappingModel) -> AlbumGroupMapping:
    return AlbumGroupMapping(
        id=model.id,
        album_id=model.album_id,
        album_title=model.album_title,
        artist_name=model.artist_name,
        job_id=model.job_id,
        job_title=model.job_title,
        source_name=model.source_name,
        created_at=ensure_utc_aware(model.created_at),
    )


def _dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT that supports ON CONFLICT."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(model)
    return sqlite.insert(model)


# Hey future me, this store is used from MANY concurrent background tasks, so every public
# method opens its own short transaction instead of sharing a session. put() is a single
# INSERT .. ON CONFLICT(track_id) DO UPDATE statement - the database does the "insert or update"
# atomically, so two coordinators racing on the same track can't produce two rows. The CASE
# expressions implement the monotonic rule: if the stored row already has a link and the
# incoming write has none, the stored row wins on EVERY column (a stale "pending" write must not
# even swap the file info under a synced track).
class SqlAlchemyMappingStore(IMappingStore):
    """IMappingStore over SQLAlchemy async sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        change_feed: IChangeFeed | None = None,
    ) -> None:
        """Initialize store.

        Args:
            session_factory: Async session factory (Database.session_factory)
            change_feed: Feed that receives an event after each committed write
        """
        self._session_factory = session_factory
        self._change_feed = change_feed

    def _publish(self, event_type: ChangeEventType, mapping: TrackFileMapping) -> None:
        if self._change_feed is None:
            return
        self._change_feed.publish(
            MappingChangeEvent(
                event_type=event_type,
                track_id=mapping.track_id,
                direct_link=mapping.direct_link,
            )
        )

    async def get(self, track_id: str) -> TrackFileMapping | None:
        """Get mapping for a track."""
        async with self._session_factory() as session:
            model = await session.scalar(
                select(TrackFileMappingModel).where(TrackFileMappingModel.track_id == track_id)
            )
            return _to_entity(model) if model else None

    async def get_many(self, track_ids: Sequence[str]) -> list[TrackFileMapping]:
        """Batch lookup for rehydration."""
        if not track_ids:
            return []
        async with self._session_factory() as session:
            result = await session.scalars(
                select(TrackFileMappingModel).where(
                    TrackFileMappingModel.track_id.in_(list(track_ids))
                )
            )
            return [_to_entity(model) for model in result.all()]

    async def get_group_mapping(self, album_id: str) -> AlbumGroupMapping | None:
        """Get the group mapping of an album, if any."""
        async with self._session_factory() as session:
            model = await session.scalar(
                select(AlbumGroupMappingModel).where(AlbumGroupMappingModel.album_id == album_id)
            )
            return _group_to_entity(model) if model else None

    async def put(self, mapping: TrackFileMapping) -> TrackFileMapping:
        """Upsert keyed on track_id with monotonic direct_link.

        Raises:
            StoreWriteError: If the write fails
        """
        try:
            stored, existed = await self._upsert(mapping)
        except SQLAlchemyError as e:
            logger.error("Mapping upsert failed for track %s: %s", mapping.track_id, e)
            raise StoreWriteError(f"Failed to store mapping for track {mapping.track_id}") from e

        if mapping.direct_link is None and stored.direct_link is not None:
            logger.debug(
                "Kept existing direct link for track %s (incoming write had none)",
                mapping.track_id,
            )
        self._publish(ChangeEventType.UPDATE if existed else ChangeEventType.INSERT, stored)
        return stored

    @with_db_retry()
    async def _upsert(self, mapping: TrackFileMapping) -> tuple[TrackFileMapping, bool]:
        async with self._session_factory() as session, session.begin():
            existed = (
                await session.scalar(
                    select(TrackFileMappingModel.id).where(
                        TrackFileMappingModel.track_id == mapping.track_id
                    )
                )
                is not None
            )

            now = utc_now()
            stmt = _dialect_insert(session, TrackFileMappingModel).values(
                id=mapping.id or str(uuid.uuid4()),
                track_id=mapping.track_id,
                group_mapping_id=mapping.group_mapping_id,
                track_title=mapping.track_title,
                file_id=mapping.file_id,
                file_path=mapping.file_path,
                file_name=mapping.file_name,
                direct_link=mapping.direct_link,
                source_name=mapping.source_name,
                created_at=now,
                updated_at=now,
            )
            keep_stored = and_(
                TrackFileMappingModel.direct_link.is_not(None),
                stmt.excluded.direct_link.is_(None),
            )
            set_: dict[str, Any] = {
                column: case(
                    (keep_stored, getattr(TrackFileMappingModel, column)),
                    else_=getattr(stmt.excluded, column),
                )
                for column in _UPSERT_COLUMNS
            }
            set_["updated_at"] = now
            stmt = stmt.on_conflict_do_update(index_elements=["track_id"], set_=set_)

            model = await session.scalar(
                stmt.returning(TrackFileMappingModel),
                execution_options={"populate_existing": True},
            )
            return _to_entity(model), existed

    async def set_direct_link(self, track_id: str, direct_link: str) -> TrackFileMapping | None:
        """Complete a pending row.

        Raises:
            StoreWriteError: If the write fails
        """
        try:
            stored = await self._set_link(track_id, direct_link)
        except SQLAlchemyError as e:
            logger.error("Setting direct link failed for track %s: %s", track_id, e)
            raise StoreWriteError(f"Failed to set direct link for track {track_id}") from e

        if stored is not None:
            self._publish(ChangeEventType.UPDATE, stored)
        return stored

    @with_db_retry()
    async def _set_link(self, track_id: str, direct_link: str) -> TrackFileMapping | None:
        async with self._session_factory() as session, session.begin():
            model = await session.scalar(
                update(TrackFileMappingModel)
                .where(TrackFileMappingModel.track_id == track_id)
                .values(direct_link=direct_link, updated_at=utc_now())
                .returning(TrackFileMappingModel),
                execution_options={"populate_existing": True},
            )
            return _to_entity(model) if model else None

    async def get_or_create_group_mapping(
        self,
        album_id: str,
        album_title: str,
        artist_name: str,
        bulk_job: BulkJob,
    ) -> str:
        """Return the album's group mapping id, inserting one if missing.

        First writer wins: a later call with a different bulk job gets the existing id.

        Raises:
            StoreWriteError: If the write fails
        """
        try:
            return await self._get_or_create_group(album_id, album_title, artist_name, bulk_job)
        except SQLAlchemyError as e:
            logger.error("Group mapping write failed for album %s: %s", album_id, e)
            raise StoreWriteError(f"Failed to store group mapping for album {album_id}") from e

    @with_db_retry()
    async def _get_or_create_group(
        self,
        album_id: str,
        album_title: str,
        artist_name: str,
        bulk_job: BulkJob,
    ) -> str:
        async with self._session_factory() as session, session.begin():
            existing = await session.scalar(
                select(AlbumGroupMappingModel.id).where(AlbumGroupMappingModel.album_id == album_id)
            )
            if existing is not None:
                return existing

            stmt = (
                _dialect_insert(session, AlbumGroupMappingModel)
                .values(
                    id=str(uuid.uuid4()),
                    album_id=album_id,
                    album_title=album_title,
                    artist_name=artist_name,
                    job_id=bulk_job.job_id,
                    job_title=bulk_job.title,
                    source_name=bulk_job.source_name,
                    created_at=utc_now(),
                    updated_at=utc_now(),
                )
                .on_conflict_do_nothing(index_elements=["album_id"])
            )
            await session.execute(stmt)

            # Either our insert or a concurrent one - read whichever landed
            group_id = await session.scalar(
                select(AlbumGroupMappingModel.id).where(AlbumGroupMappingModel.album_id == album_id)
            )
            if group_id is None:
                raise StoreWriteError(f"Group mapping for album {album_id} vanished after insert")
            logger.info(
                "Created group mapping for album %s -> %s job %s",
                album_id,
                bulk_job.source_name,
                bulk_job.job_id,
            )
            return group_id

    async def delete(self, track_id: str) -> bool:
        """Delete a track mapping (admin action).

        Raises:
            StoreWriteError: If the write fails
        """
        try:
            deleted = await self._delete(track_id)
        except SQLAlchemyError as e:
            raise StoreWriteError(f"Failed to delete mapping for track {track_id}") from e

        if deleted:
            self._publish(ChangeEventType.DELETE, TrackFileMapping(track_id=track_id))
        return deleted

    @with_db_retry()
    async def _delete(self, track_id: str) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(TrackFileMappingModel).where(TrackFileMappingModel.track_id == track_id)
            )
            return bool(result.rowcount)
