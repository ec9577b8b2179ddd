"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum

from tracksync.domain.exceptions import ValidationError


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


# Hey future me, Track is the INPUT to the whole pipeline and it's frozen on purpose - the
# metadata provider owns it, we only read it. duration is seconds and 0 means "unknown" (Deezer
# sometimes omits it). album/album_id are optional: singles and search results often have no
# album context, and then adapters fall back to a title+artist query.
@dataclass(frozen=True)
class Track:
    """Immutable track descriptor from the metadata provider."""

    id: str
    title: str
    artist: str
    album: str | None = None
    album_id: str | None = None
    duration: int = 0
    cover_url: str | None = None
    artist_id: str | None = None

    def __post_init__(self) -> None:
        """Validate track data."""
        if not self.id:
            raise ValidationError("Track id cannot be empty")
        if not self.title or not self.title.strip():
            raise ValidationError("Track title cannot be empty")
        if self.duration < 0:
            raise ValidationError("Duration cannot be negative")

    @property
    def has_album_context(self) -> bool:
        """True when an album title is available for album-level queries."""
        return bool(self.album and self.album.strip())


class CandidateStatus(str, Enum):
    """Readiness of a stream candidate.

    Closed set - adapters map their backend's status strings onto these at the boundary.
    """

    READY = "ready"
    DOWNLOADING = "downloading"
    QUEUED = "queued"
    ERROR = "error"
    DEAD = "dead"

    @property
    def is_pending(self) -> bool:
        """Backend is still materializing the file."""
        return self in (CandidateStatus.DOWNLOADING, CandidateStatus.QUEUED)

    @property
    def is_failure(self) -> bool:
        """Backend gave up on this job."""
        return self in (CandidateStatus.ERROR, CandidateStatus.DEAD)


@dataclass(frozen=True)
class AudioFile:
    """One file inside a bulk job (torrent) listing."""

    id: int
    path: str
    selected: bool = False

    @property
    def filename(self) -> str:
        """Last path segment."""
        return self.path.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class BulkJob:
    """A backend job covering many tracks, typically one torrent for one album."""

    job_id: str
    title: str
    source_name: str


@dataclass(frozen=True)
class JobHandle:
    """What a poller needs to check on a pending candidate."""

    source_name: str
    job_id: str
    file_ids: tuple[int, ...] = ()


# Listen up, StreamCandidate enforces the status/payload pairing at construction time:
# READY without a stream_url, or a pending status without a job handle, is a bug in an
# adapter and we want it to blow up right there, not three layers later in the coordinator.
@dataclass(frozen=True)
class StreamCandidate:
    """A possibly-playable result returned by a source adapter."""

    source_name: str
    status: CandidateStatus
    stream_url: str | None = None
    quality: str = "MP3"
    size: int | None = None
    progress: float = 0.0
    job: JobHandle | None = None
    bulk_job: BulkJob | None = None
    file: AudioFile | None = None
    matched_text: str | None = None
    match_score: float | None = None

    def __post_init__(self) -> None:
        """Validate status/payload pairing."""
        if self.status == CandidateStatus.READY and not self.stream_url:
            raise ValidationError(f"{self.source_name}: ready candidate without stream_url")
        if self.status.is_pending and self.job is None:
            raise ValidationError(f"{self.source_name}: pending candidate without job handle")
        if self.progress < 0.0 or self.progress > 100.0:
            raise ValidationError("Progress must be between 0 and 100")

    @property
    def is_ready(self) -> bool:
        """Stream can be played right now."""
        return self.status == CandidateStatus.READY


class FailureReason(str, Enum):
    """Why the orchestrator could not produce a candidate."""

    NOT_FOUND = "not_found"
    ALL_SOURCES_FAILED = "all_sources_failed"
    INVALID_CREDENTIALS = "invalid_credentials"


@dataclass(frozen=True)
class ResolutionFailure:
    """Typed failure returned by the orchestrator instead of raising."""

    reason: FailureReason
    message: str
    attempted_sources: tuple[str, ...] = ()


@dataclass
class AlbumGroupMapping:
    """Links an album to the bulk job chosen for it."""

    id: str
    album_id: str
    album_title: str
    artist_name: str
    job_id: str
    job_title: str
    source_name: str
    created_at: datetime = field(default_factory=utc_now)


# Hey future me, direct_link is THE ground truth for "synced". A row with a null link means
# "we picked a file, backend is still downloading". Once a link is set it never goes back to
# null - the store enforces that, don't try to work around it here.
@dataclass
class TrackFileMapping:
    """Persisted resolution of one track."""

    track_id: str
    track_title: str = ""
    file_path: str = ""
    file_name: str = ""
    file_id: int | None = None
    direct_link: str | None = None
    group_mapping_id: str | None = None
    source_name: str = ""
    id: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_synced(self) -> bool:
        """True when a playable link is stored."""
        return self.direct_link is not None

    @classmethod
    def for_candidate(
        cls,
        track: Track,
        candidate: StreamCandidate,
        direct_link: str | None,
        group_mapping_id: str | None = None,
    ) -> "TrackFileMapping":
        """Row for a resolved (direct_link set) or pending (None) candidate."""
        audio_file = candidate.file
        return cls(
            track_id=track.id,
            track_title=track.title,
            file_path=audio_file.path if audio_file is not None else "",
            file_name=audio_file.filename if audio_file is not None else track.title,
            file_id=audio_file.id if audio_file is not None else None,
            direct_link=direct_link,
            group_mapping_id=group_mapping_id,
            source_name=candidate.source_name,
        )

    def is_abandoned(self, now: datetime, ceiling: timedelta) -> bool:
        """Null-link row not written to for longer than the polling ceiling.

        Nobody is polling it anymore, so a new trigger may re-resolve the track.
        """
        return self.direct_link is None and now - self.updated_at > ceiling


class SyncState(str, Enum):
    """Per-track lifecycle label shown in the UI."""

    IDLE = "idle"
    SYNCING = "syncing"
    DOWNLOADING = "downloading"
    SYNCED = "synced"


class CoordinatorState(str, Enum):
    """States of one background sync run."""

    IDLE = "idle"
    CHECKING_CACHE = "checking_cache"
    RESOLVING = "resolving"
    READY = "ready"
    PENDING_POLL = "pending_poll"
    TIMED_OUT = "timed_out"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Run is finished."""
        return self in (
            CoordinatorState.READY,
            CoordinatorState.TIMED_OUT,
            CoordinatorState.FAILED,
        )


class ChangeEventType(str, Enum):
    """Row change kinds emitted by the mapping store."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class MappingChangeEvent:
    """Realtime notification about a track_file_mappings row."""

    event_type: ChangeEventType
    track_id: str
    direct_link: str | None = None


__all__ = [
    "AlbumGroupMapping",
    "AudioFile",
    "BulkJob",
    "CandidateStatus",
    "ChangeEventType",
    "CoordinatorState",
    "FailureReason",
    "JobHandle",
    "MappingChangeEvent",
    "ResolutionFailure",
    "StreamCandidate",
    "SyncState",
    "Track",
    "TrackFileMapping",
    "utc_now",
]
