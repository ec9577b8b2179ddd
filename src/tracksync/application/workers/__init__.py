"""Background workers."""

from tracksync.application.workers.background_sync_coordinator import BackgroundSyncCoordinator

__all__ = ["BackgroundSyncCoordinator"]
