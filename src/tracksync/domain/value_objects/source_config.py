"""Source selection and audio quality value objects."""

from dataclasses import dataclass
from enum import Enum

from tracksync.domain.exceptions import ValidationError

# Source ids used across config, registry and persisted rows.
REAL_DEBRID = "real-debrid"
SQUIDWTF = "squidwtf"
MONOCHROME = "monochrome"
KNOWN_SOURCES: tuple[str, ...] = (REAL_DEBRID, SQUIDWTF, MONOCHROME)
SCRAPING_SOURCES: tuple[str, ...] = (SQUIDWTF, MONOCHROME)


class SourceMode(str, Enum):
    """How the user wants sources combined.

    SCRAPING_PRIORITY uses a single streaming-scrape source, DEBRID_PRIORITY uses only the
    debrid service, HYBRID_PRIORITY walks an ordered fallback chain.
    """

    SCRAPING_PRIORITY = "scraping_priority"
    DEBRID_PRIORITY = "debrid_priority"
    HYBRID_PRIORITY = "hybrid_priority"


class AudioQuality(str, Enum):
    """Requested audio quality tier."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    def to_tidal_quality(self) -> str:
        """Map to the quality names the Tidal proxy mirrors understand."""
        return _TIDAL_QUALITY[self]


_TIDAL_QUALITY: dict[AudioQuality, str] = {
    AudioQuality.HIGH: "LOSSLESS",
    AudioQuality.MEDIUM: "HIGH",
    AudioQuality.LOW: "LOW",
}


def quality_from_filename(filename: str) -> str:
    """Guess a quality label from a torrent file name.

    Args:
        filename: File name or path

    Returns:
        "FLAC", "320kbps", "256kbps" or "MP3"
    """
    lowered = filename.lower()
    if "flac" in lowered:
        return "FLAC"
    if "320" in lowered:
        return "320kbps"
    if "256" in lowered:
        return "256kbps"
    return "MP3"


@dataclass(frozen=True)
class SourceConfig:
    """Which sources to try, in which order, and how to treat pending results.

    Hey future me - `sources` is the single source of truth for ordering. The orchestrator
    never reorders it. allow_parallel_pending=False means "a pending debrid job is good enough,
    hand it to the poller". True means "note it and keep looking for something ready".
    """

    mode: SourceMode
    sources: tuple[str, ...]
    allow_parallel_pending: bool = False
    quality: AudioQuality = AudioQuality.HIGH

    def __post_init__(self) -> None:
        if not self.sources:
            raise ValidationError("SourceConfig needs at least one source")
        if len(set(self.sources)) != len(self.sources):
            raise ValidationError(f"Duplicate sources in chain: {self.sources}")

    @classmethod
    def single(cls, source: str, quality: AudioQuality = AudioQuality.HIGH) -> "SourceConfig":
        """Config for exactly one source."""
        mode = SourceMode.DEBRID_PRIORITY if source == REAL_DEBRID else SourceMode.SCRAPING_PRIORITY
        return cls(mode=mode, sources=(source,), quality=quality)

    @classmethod
    def chain(
        cls,
        *sources: str,
        allow_parallel_pending: bool = False,
        quality: AudioQuality = AudioQuality.HIGH,
    ) -> "SourceConfig":
        """Config for an ordered fallback chain."""
        return cls(
            mode=SourceMode.HYBRID_PRIORITY,
            sources=tuple(sources),
            allow_parallel_pending=allow_parallel_pending,
            quality=quality,
        )
