"""Application services - resolution, sync state and album sync."""

from tracksync.application.services.album_sync_service import AlbumSyncReport, AlbumSyncService
from tracksync.application.services.resolution_orchestrator import ResolutionOrchestrator
from tracksync.application.services.sync_state import SyncSnapshot, SyncStateBroadcaster

__all__ = [
    "AlbumSyncReport",
    "AlbumSyncService",
    "ResolutionOrchestrator",
    "SyncSnapshot",
    "SyncStateBroadcaster",
]
