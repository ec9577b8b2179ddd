"""Runtime wiring: build every component from Settings and manage its lifecycle.

Hey future me - this is the ONE place that knows how the pieces fit together. The embedding
application does:

    async with sync_runtime() as runtime:
        runtime.coordinator.trigger(track)      # user favorited a track
        await runtime.album_sync.sync_album(...)  # user hit "sync album"

Startup order matters: logging first (so everything after is logged), then the database
(tables), then the change feed subscription so the broadcaster sees the very first write.
Shutdown runs in reverse: stop background runs BEFORE closing the DB and the HTTP pool, or
a poller would hit a closed connection.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path

import httpx
from sqlalchemy.engine import make_url

from tracksync.application.services.album_sync_service import AlbumSyncService
from tracksync.application.services.resolution_orchestrator import ResolutionOrchestrator
from tracksync.application.services.sync_state import SyncStateBroadcaster
from tracksync.application.workers.background_sync_coordinator import BackgroundSyncCoordinator
from tracksync.config import Settings, get_settings
from tracksync.domain.exceptions import ConfigurationError
from tracksync.domain.ports import ICredentialStore, Unsubscribe
from tracksync.domain.value_objects import MONOCHROME, SQUIDWTF, SourceConfig
from tracksync.infrastructure.integrations.apibay_client import ApibayTorrentIndex
from tracksync.infrastructure.integrations.deezer_client import DeezerMetadataProvider
from tracksync.infrastructure.integrations.http_pool import HttpClientPool
from tracksync.infrastructure.integrations.mirror_client import MirrorRacer, TidalMirrorClient
from tracksync.infrastructure.integrations.realdebrid_client import RealDebridClient
from tracksync.infrastructure.observability import configure_logging
from tracksync.infrastructure.observability.health import (
    HealthCheck,
    check_database_health,
    check_sources_health,
)
from tracksync.infrastructure.persistence import (
    Database,
    InProcessChangeFeed,
    SettingsCredentialStore,
    SqlAlchemyMappingStore,
)
from tracksync.infrastructure.providers import (
    MonochromeSourceAdapter,
    RealDebridSourceAdapter,
    SourceRegistry,
    SquidWtfSourceAdapter,
)

logger = logging.getLogger(__name__)


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-based SQLite database.

    Raises:
        ConfigurationError: If the directory cannot be created
    """
    url = make_url(database_url)
    if not url.get_backend_name().startswith("sqlite"):
        return
    if not url.database or url.database == ":memory:":
        return

    parent = Path(url.database).expanduser().parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{parent}': {exc}. "
            "Update TRACKSYNC_DATABASE__URL or adjust directory permissions."
        ) from exc


@dataclass
class SyncRuntime:
    """Every long-lived component of the sync engine."""

    settings: Settings
    database: Database
    change_feed: InProcessChangeFeed
    store: SqlAlchemyMappingStore
    broadcaster: SyncStateBroadcaster
    registry: SourceRegistry
    orchestrator: ResolutionOrchestrator
    coordinator: BackgroundSyncCoordinator
    album_sync: AlbumSyncService
    real_debrid: RealDebridSourceAdapter
    metadata: DeezerMetadataProvider
    source_config: SourceConfig
    _detach_feed: Unsubscribe | None = field(default=None, init=False, repr=False)
    _started: bool = field(default=False, init=False, repr=False)

    async def start(self) -> None:
        """Create tables and start following the change feed."""
        if self._started:
            return
        await self.database.create_tables()
        self._detach_feed = self.broadcaster.attach_change_feed(self.change_feed)
        self._started = True
        logger.info(
            "Sync runtime started (sources: %s)", ", ".join(self.source_config.sources)
        )

    async def health(self) -> list[HealthCheck]:
        """Database and source reachability checks."""
        return [
            await check_database_health(self.database),
            await check_sources_health(self.registry),
        ]

    async def aclose(self) -> None:
        """Stop background runs, then release the database and HTTP connections."""
        await self.coordinator.shutdown()
        if self._detach_feed is not None:
            self._detach_feed()
            self._detach_feed = None
        await self.database.close()
        await HttpClientPool.close()
        self._started = False
        logger.info("Sync runtime stopped")


def build_sync_runtime(
    settings: Settings | None = None,
    credentials: ICredentialStore | None = None,
    http_client: httpx.AsyncClient | None = None,
    broadcaster: SyncStateBroadcaster | None = None,
) -> SyncRuntime:
    """Assemble the sync engine.

    Args:
        settings: Settings (cached env settings when omitted)
        credentials: Credential store (settings-backed when omitted)
        http_client: Client injected into every integration (shared pool when omitted)
        broadcaster: Broadcaster (process-wide instance when omitted)

    Returns:
        A runtime that still needs start()

    Raises:
        ConfigurationError: If the resolution settings are unusable
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    source_config = settings.resolution.to_source_config()

    _ensure_sqlite_directory(settings.database.url)
    database = Database(settings.database)
    change_feed = InProcessChangeFeed()
    store = SqlAlchemyMappingStore(database.session_factory, change_feed)
    broadcaster = broadcaster or SyncStateBroadcaster.get_instance()

    real_debrid = RealDebridSourceAdapter(
        client=RealDebridClient(settings.real_debrid, client=http_client),
        index=ApibayTorrentIndex(settings.torrent_index, client=http_client),
        credentials=credentials or SettingsCredentialStore(settings.real_debrid),
        settings=settings.real_debrid,
    )
    mirrors = settings.mirrors
    squidwtf = SquidWtfSourceAdapter(
        TidalMirrorClient(
            MirrorRacer(
                SQUIDWTF,
                mirrors.squidwtf_mirrors,
                client=http_client,
                request_timeout=mirrors.request_timeout,
                user_agent=mirrors.user_agent,
            ),
            parallel=True,
        )
    )
    monochrome = MonochromeSourceAdapter(
        TidalMirrorClient(
            MirrorRacer(
                MONOCHROME,
                mirrors.monochrome_mirrors,
                client=http_client,
                request_timeout=mirrors.request_timeout,
                user_agent=mirrors.user_agent,
            ),
            parallel=False,
        )
    )

    registry = SourceRegistry()
    for adapter in (real_debrid, squidwtf, monochrome):
        registry.register(adapter)

    orchestrator = ResolutionOrchestrator(registry)
    coordinator = BackgroundSyncCoordinator(
        orchestrator=orchestrator,
        store=store,
        broadcaster=broadcaster,
        settings=settings.sync,
        default_config=source_config,
    )
    album_sync = AlbumSyncService(
        adapter=real_debrid,
        store=store,
        broadcaster=broadcaster,
        settings=settings.sync,
    )

    return SyncRuntime(
        settings=settings,
        database=database,
        change_feed=change_feed,
        store=store,
        broadcaster=broadcaster,
        registry=registry,
        orchestrator=orchestrator,
        coordinator=coordinator,
        album_sync=album_sync,
        real_debrid=real_debrid,
        metadata=DeezerMetadataProvider(settings.deezer, client=http_client),
        source_config=source_config,
    )


@asynccontextmanager
async def sync_runtime(
    settings: Settings | None = None,
    credentials: ICredentialStore | None = None,
) -> AsyncGenerator[SyncRuntime, None]:
    """Started runtime for the duration of the block; always closed on exit."""
    runtime = build_sync_runtime(settings, credentials)
    try:
        await runtime.start()
        yield runtime
    finally:
        await runtime.aclose()


__all__ = ["SyncRuntime", "build_sync_runtime", "sync_runtime"]
