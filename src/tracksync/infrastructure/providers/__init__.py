"""Source adapters: one ISourceAdapter per stream backend."""

from tracksync.infrastructure.providers.realdebrid_provider import RealDebridSourceAdapter
from tracksync.infrastructure.providers.registry import SourceRegistry
from tracksync.infrastructure.providers.tidal_mirror_provider import (
    MonochromeSourceAdapter,
    SquidWtfSourceAdapter,
    TidalMirrorSourceAdapter,
)

__all__ = [
    "MonochromeSourceAdapter",
    "RealDebridSourceAdapter",
    "SourceRegistry",
    "SquidWtfSourceAdapter",
    "TidalMirrorSourceAdapter",
]
