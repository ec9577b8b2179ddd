"""HTTP clients for the external services (debrid API, torrent index, mirrors, Deezer)."""

from tracksync.infrastructure.integrations.apibay_client import ApibayTorrentIndex
from tracksync.infrastructure.integrations.deezer_client import DeezerMetadataProvider
from tracksync.infrastructure.integrations.http_pool import HttpClientPool
from tracksync.infrastructure.integrations.mirror_client import MirrorRacer, TidalMirrorClient
from tracksync.infrastructure.integrations.realdebrid_client import RealDebridClient

__all__ = [
    "ApibayTorrentIndex",
    "DeezerMetadataProvider",
    "HttpClientPool",
    "MirrorRacer",
    "RealDebridClient",
    "TidalMirrorClient",
]
