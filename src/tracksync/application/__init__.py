"""Application layer: resolution, sync state and background sync."""
