"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from tracksync.domain.dtos import BulkJobListing, TorrentSearchResult
from tracksync.domain.entities import (
    AudioFile,
    BulkJob,
    JobHandle,
    MappingChangeEvent,
    StreamCandidate,
    Track,
    TrackFileMapping,
)
from tracksync.domain.value_objects import AudioQuality

Unsubscribe = Callable[[], None]


# Hey future me, this is THE contract every backend implements. search() returns candidates
# (possibly empty - "nothing found" is not an exception) and raises only typed domain errors:
# SourceUnreachableError when the backend is down, InvalidCredentialsError when the key is bad.
# poll() is for pending candidates - backends that only ever return READY can answer ERROR.
class ISourceAdapter(ABC):
    """Port for one stream backend."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Stable source id ("real-debrid", "squidwtf", ...)."""
        pass

    @abstractmethod
    async def search(self, track: Track, quality: AudioQuality) -> list[StreamCandidate]:
        """Find stream candidates for a track.

        Args:
            track: Track to resolve
            quality: Requested quality tier

        Returns:
            Candidates, best first. Empty list when nothing matched.
        """
        pass

    @abstractmethod
    async def poll(self, job: JobHandle) -> StreamCandidate:
        """Check on a pending job.

        Args:
            job: Handle from a pending candidate

        Returns:
            Fresh candidate with the current status
        """
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap reachability check."""
        pass


class IBulkSourceAdapter(ISourceAdapter):
    """Source that can resolve a whole album through one bulk job."""

    @abstractmethod
    async def find_bulk_job(self, query: str, expected_tracks: int) -> BulkJobListing | None:
        """Find one bulk job (torrent) for an album query.

        Args:
            query: "album artist" style query
            expected_tracks: Number of tracks the album should have

        Returns:
            Job plus its audio files, or None
        """
        pass

    @abstractmethod
    async def materialize(self, bulk_job: BulkJob, file: AudioFile) -> StreamCandidate:
        """Select one file of a bulk job and return its current candidate."""
        pass


class IMappingStore(ABC):
    """Port for the durable track -> stream mapping."""

    @abstractmethod
    async def get(self, track_id: str) -> TrackFileMapping | None:
        """Get mapping for a track, or None."""
        pass

    @abstractmethod
    async def get_many(self, track_ids: Sequence[str]) -> list[TrackFileMapping]:
        """Batch lookup; missing ids are simply absent from the result."""
        pass

    @abstractmethod
    async def put(self, mapping: TrackFileMapping) -> TrackFileMapping:
        """Upsert keyed on track_id.

        Never replaces a stored non-null direct_link with null.

        Returns:
            The row as stored after the write
        """
        pass

    @abstractmethod
    async def set_direct_link(self, track_id: str, direct_link: str) -> TrackFileMapping | None:
        """Complete a pending row in place. Returns None when no row exists."""
        pass

    @abstractmethod
    async def get_or_create_group_mapping(
        self,
        album_id: str,
        album_title: str,
        artist_name: str,
        bulk_job: BulkJob,
    ) -> str:
        """Return the group mapping id for an album, creating it if needed."""
        pass

    @abstractmethod
    async def delete(self, track_id: str) -> bool:
        """Delete a mapping. Returns True if a row was removed."""
        pass


class IChangeFeed(ABC):
    """Port for realtime mapping row changes."""

    @abstractmethod
    def publish(self, event: MappingChangeEvent) -> None:
        """Deliver an event to all subscribers."""
        pass

    @abstractmethod
    def subscribe(self, callback: Callable[[MappingChangeEvent], None]) -> Unsubscribe:
        """Register a callback; returns a function that removes it."""
        pass


class ICredentialStore(ABC):
    """Port for user-supplied API keys."""

    @abstractmethod
    async def get_api_key(self) -> str | None:
        """Return the debrid API key, or None when not configured."""
        pass


class IMetadataProvider(ABC):
    """Port for the canonical metadata provider."""

    @abstractmethod
    async def search_tracks(self, query: str, limit: int = 25) -> list[Track]:
        """Search tracks by free text."""
        pass

    @abstractmethod
    async def get_track(self, track_id: str) -> Track | None:
        """Get one track by provider id."""
        pass


class ITorrentIndex(ABC):
    """Port for a public torrent search index."""

    @abstractmethod
    async def search(self, query: str) -> list[TorrentSearchResult]:
        """Search torrents, best first."""
        pass


__all__ = [
    "IBulkSourceAdapter",
    "IChangeFeed",
    "ICredentialStore",
    "IMappingStore",
    "IMetadataProvider",
    "ISourceAdapter",
    "ITorrentIndex",
    "Unsubscribe",
]
