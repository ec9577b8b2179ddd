"""SQLAlchemy ORM models for the mapping store."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite hands datetimes back naive even when we stored UTC. Run anything read
# from the DB through this before comparing with datetime.now(UTC), or you get
# "can't compare offset-naive and offset-aware datetimes".
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Listen up, album_id is UNIQUE - that's the "one bulk job per album" rule enforced by the DB,
# not just by a check-then-insert. Two tracks of the same album syncing at once will race on
# the insert; the loser gets IntegrityError and the repository re-reads the winner's row.
class AlbumGroupMappingModel(Base):
    """One chosen bulk job (torrent) per album."""

    __tablename__ = "album_group_mappings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    album_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    album_title: Mapped[str] = mapped_column(String(512), nullable=False)
    artist_name: Mapped[str] = mapped_column(String(512), nullable=False)
    job_id: Mapped[str] = mapped_column(String(255), nullable=False)
    job_title: Mapped[str] = mapped_column(String(1024), nullable=False)
    source_name: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    tracks: Mapped[list["TrackFileMappingModel"]] = relationship(
        back_populates="group_mapping",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# Hey future me, direct_link NULL means "file picked, backend still downloading". The
# repository never writes NULL over a non-NULL link - this table only moves forward.
class TrackFileMappingModel(Base):
    """Persisted resolution of one track to one file/stream."""

    __tablename__ = "track_file_mappings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    track_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    group_mapping_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("album_group_mappings.id", ondelete="CASCADE"),
        nullable=True,
    )
    track_title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    file_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    file_path: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_name: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    direct_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_name: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    group_mapping: Mapped[AlbumGroupMappingModel | None] = relationship(
        back_populates="tracks"
    )

    __table_args__ = (Index("ix_track_file_mappings_group", "group_mapping_id"),)
