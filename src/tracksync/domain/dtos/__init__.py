"""Data transfer objects passed between integrations and providers."""

from dataclasses import dataclass, field
from urllib.parse import quote

from tracksync.domain.entities import AudioFile, BulkJob


@dataclass(frozen=True)
class TorrentSearchResult:
    """One hit from a public torrent index."""

    torrent_id: str
    name: str
    info_hash: str
    size: int
    seeders: int

    @property
    def magnet(self) -> str:
        """Magnet URI built from the info hash."""
        return f"magnet:?xt=urn:btih:{self.info_hash}&dn={quote(self.name)}"


@dataclass(frozen=True)
class DebridTorrentInfo:
    """State of a torrent on the debrid service."""

    torrent_id: str
    filename: str
    status: str
    progress: float = 0.0
    files: tuple[AudioFile, ...] = ()
    links: tuple[str, ...] = ()


@dataclass(frozen=True)
class UnrestrictedLink:
    """Direct download link returned by the debrid unrestrict endpoint."""

    download: str
    filename: str
    filesize: int = 0
    mime_type: str | None = None


@dataclass(frozen=True)
class DebridAccount:
    """Account info returned when verifying an API key."""

    username: str
    premium: bool
    expiration: str | None = None


@dataclass(frozen=True)
class BulkJobListing:
    """A bulk job plus the audio files it contains."""

    job: BulkJob
    files: tuple[AudioFile, ...] = field(default_factory=tuple)


__all__ = [
    "BulkJobListing",
    "DebridAccount",
    "DebridTorrentInfo",
    "TorrentSearchResult",
    "UnrestrictedLink",
]
