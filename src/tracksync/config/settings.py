"""Application settings loaded from environment variables and .env."""

from functools import lru_cache

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tracksync.domain.exceptions import ConfigurationError
from tracksync.domain.value_objects import (
    KNOWN_SOURCES,
    REAL_DEBRID,
    SCRAPING_SOURCES,
    SQUIDWTF,
    AudioQuality,
    SourceConfig,
    SourceMode,
)


class DatabaseSettings(BaseModel):
    """Mapping store database settings."""

    url: str = "sqlite+aiosqlite:///./tracksync.db"
    echo: bool = False
    pool_pre_ping: bool = True
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


class RealDebridSettings(BaseModel):
    """Debrid service settings."""

    api_url: str = "https://api.real-debrid.com/rest/1.0"
    api_key: SecretStr | None = None
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 0.5
    # Only the first N ranked torrents get added to the account per search
    max_torrents: int = Field(default=8, ge=1)
    # RD needs a moment after selectFiles before the status flips
    select_settle_delay: float = 1.5


class TorrentIndexSettings(BaseModel):
    """Public torrent index settings."""

    apibay_url: str = "https://apibay.org"
    request_timeout: float = 15.0
    max_results: int = 20


class DeezerSettings(BaseModel):
    """Public Deezer API (metadata lookups, no auth)."""

    api_url: str = "https://api.deezer.com"
    request_timeout: float = 15.0
    max_retries: int = 3


class MirrorSettings(BaseModel):
    """Tidal proxy mirrors used by the streaming-scrape sources."""

    squidwtf_mirrors: list[str] = Field(
        default_factory=lambda: [
            "https://triton.squid.wtf",
            "https://tidal-api.binimum.org",
            "https://tidal.kinoplus.online",
            "https://hund.qqdl.site",
            "https://katze.qqdl.site",
            "https://maus.qqdl.site",
        ]
    )
    monochrome_mirrors: list[str] = Field(
        default_factory=lambda: [
            "https://ohio.monochrome.tf",
            "https://virginia.monochrome.tf",
            "https://oregon.monochrome.tf",
        ]
    )
    request_timeout: float = Field(default=9.0, gt=0)
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class ResolutionSettings(BaseModel):
    """How sources are picked and combined."""

    mode: SourceMode = SourceMode.SCRAPING_PRIORITY
    preferred_scraping_source: str = SQUIDWTF
    fallback_chain: list[str] = Field(default_factory=lambda: [REAL_DEBRID, SQUIDWTF])
    allow_parallel_pending: bool = False
    audio_quality: AudioQuality = AudioQuality.HIGH

    @field_validator("fallback_chain")
    @classmethod
    def _known_sources(cls, value: list[str]) -> list[str]:
        unknown = [source for source in value if source not in KNOWN_SOURCES]
        if unknown:
            raise ValueError(f"Unknown sources in fallback chain: {unknown}")
        return value

    def to_source_config(self) -> SourceConfig:
        """Build the SourceConfig the orchestrator consumes.

        Raises:
            ConfigurationError: If the selected mode has nothing to try
        """
        if self.mode == SourceMode.DEBRID_PRIORITY:
            return SourceConfig.single(REAL_DEBRID, quality=self.audio_quality)
        if self.mode == SourceMode.SCRAPING_PRIORITY:
            if self.preferred_scraping_source not in SCRAPING_SOURCES:
                raise ConfigurationError(
                    f"Unknown scraping source: {self.preferred_scraping_source}"
                )
            return SourceConfig.single(self.preferred_scraping_source, quality=self.audio_quality)
        if not self.fallback_chain:
            raise ConfigurationError("Hybrid mode needs a non-empty fallback_chain")
        return SourceConfig.chain(
            *self.fallback_chain,
            allow_parallel_pending=self.allow_parallel_pending,
            quality=self.audio_quality,
        )


class SyncSettings(BaseModel):
    """Background sync timing."""

    poll_interval: float = Field(default=1.0, gt=0)
    # Abort when progress sits at 0% for longer than this
    stall_timeout: float = 10.0
    # Absolute polling ceiling, also the age after which a null-link row counts as abandoned
    max_poll_duration: float = 120.0
    album_track_delay: float = 2.0
    album_poll_interval: float = 1.5
    album_poll_timeout: float = 30.0


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_level: str = "INFO"
    log_json_format: bool = False


class Settings(BaseSettings):
    """Root settings object.

    Nested values come from env vars like TRACKSYNC_SYNC__POLL_INTERVAL=2.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRACKSYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "tracksync"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    real_debrid: RealDebridSettings = Field(default_factory=RealDebridSettings)
    torrent_index: TorrentIndexSettings = Field(default_factory=TorrentIndexSettings)
    mirrors: MirrorSettings = Field(default_factory=MirrorSettings)
    deezer: DeezerSettings = Field(default_factory=DeezerSettings)
    resolution: ResolutionSettings = Field(default_factory=ResolutionSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
