"""Domain value objects."""

from tracksync.domain.value_objects.source_config import (
    KNOWN_SOURCES,
    MONOCHROME,
    REAL_DEBRID,
    SCRAPING_SOURCES,
    SQUIDWTF,
    AudioQuality,
    SourceConfig,
    SourceMode,
    quality_from_filename,
)
from tracksync.domain.value_objects.title_matching import (
    STOP_WORDS,
    extract_significant_words,
    normalize_for_match,
    normalize_loose,
    rank_by_similarity,
    score_remote_match,
    title_matches,
)

__all__ = [
    "KNOWN_SOURCES",
    "MONOCHROME",
    "REAL_DEBRID",
    "SCRAPING_SOURCES",
    "SQUIDWTF",
    "STOP_WORDS",
    "AudioQuality",
    "SourceConfig",
    "SourceMode",
    "extract_significant_words",
    "normalize_for_match",
    "normalize_loose",
    "quality_from_filename",
    "rank_by_similarity",
    "score_remote_match",
    "title_matches",
]
