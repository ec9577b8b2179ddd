"""Configuration module for tracksync."""

from .settings import (
    DatabaseSettings,
    DeezerSettings,
    MirrorSettings,
    ObservabilitySettings,
    RealDebridSettings,
    ResolutionSettings,
    Settings,
    SyncSettings,
    TorrentIndexSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "DeezerSettings",
    "MirrorSettings",
    "ObservabilitySettings",
    "RealDebridSettings",
    "ResolutionSettings",
    "Settings",
    "SyncSettings",
    "TorrentIndexSettings",
    "get_settings",
]
