"""Background sync coordinator: resolve, persist and poll one track at a time.

Hey future me - this runs as a SIDE EFFECT (user favorites a track, we quietly make it
playable). Nobody awaits the result, so everything here is best-effort and silent: failures
get logged and the UI badge goes back to idle. The state machine per run:

    idle -> checking_cache -> resolving -> ready | pending_poll | failed
    pending_poll -> ready | timed_out | failed

- checking_cache: a stored link means we're done, no network at all. A null-link row
  only counts as in progress while another run of THIS coordinator polls it. Otherwise
  nobody is left to clear the badge, so we resolve again (the upsert reuses the row).
- ready: the row (with link) is written FIRST, then the badge flips to synced. If the write
  fails the badge is cleared - never show synced for something that isn't stored.
- pending_poll: row is written with a null link, then we poll the job every poll_interval.
  Two independent timeouts: stuck at 0% for stall_timeout, or max_poll_duration total.
  On timeout the row STAYS (null link), only the badge is cleared.

Each run is a detached asyncio task. trigger() keeps a reference (a task nobody references
can be garbage collected mid-flight) and shutdown() cancels whatever is still running.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from tracksync.application.services.resolution_orchestrator import ResolutionOrchestrator
from tracksync.application.services.sync_state import SyncStateBroadcaster
from tracksync.config import SyncSettings
from tracksync.domain.entities import (
    CoordinatorState,
    ResolutionFailure,
    StreamCandidate,
    Track,
    TrackFileMapping,
    utc_now,
)
from tracksync.domain.exceptions import StoreWriteError
from tracksync.domain.ports import IMappingStore
from tracksync.domain.value_objects import SourceConfig
from tracksync.infrastructure.observability.logging import set_correlation_id

logger = logging.getLogger(__name__)


class BackgroundSyncCoordinator:
    """Runs the per-track sync state machine as background tasks."""

    def __init__(
        self,
        orchestrator: ResolutionOrchestrator,
        store: IMappingStore,
        broadcaster: SyncStateBroadcaster,
        settings: SyncSettings,
        default_config: SourceConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize coordinator.

        Args:
            orchestrator: Resolves tracks over the source chain
            store: Mapping store (rows are the ground truth for "synced")
            broadcaster: Sync state shown to the UI
            settings: Poll interval and timeouts
            default_config: Source config used when trigger() gets none
            clock: Monotonic clock for poll timeouts
            sleep: Sleep between polls
            now: Wall clock for row age checks
        """
        self._orchestrator = orchestrator
        self._store = store
        self._broadcaster = broadcaster
        self._settings = settings
        self._default_config = default_config
        self._clock = clock
        self._sleep = sleep
        self._now = now
        self._tasks: dict[str, asyncio.Task[CoordinatorState]] = {}
        self._closed = False

    @property
    def active_track_ids(self) -> list[str]:
        """Tracks with a run in flight."""
        return [track_id for track_id, task in self._tasks.items() if not task.done()]

    def trigger(
        self, track: Track, config: SourceConfig | None = None
    ) -> asyncio.Task[CoordinatorState] | None:
        """Start a background sync for a track.

        Must be called from inside the running event loop.

        Returns:
            The run's task (the existing one if the track is already in flight),
            or None after shutdown
        """
        if self._closed:
            logger.warning("Coordinator shut down, ignoring trigger for %s", track.id)
            return None

        existing = self._tasks.get(track.id)
        if existing is not None and not existing.done():
            logger.debug("Track %s already syncing, reusing run", track.id)
            return existing

        task = asyncio.create_task(
            self._run(track, config or self._default_config), name=f"sync-{track.id}"
        )
        self._tasks[track.id] = task
        task.add_done_callback(lambda done, track_id=track.id: self._forget(track_id, done))
        return task

    def _forget(self, track_id: str, task: asyncio.Task[CoordinatorState]) -> None:
        if self._tasks.get(track_id) is task:
            del self._tasks[track_id]

    def _has_live_run(self, track_id: str) -> bool:
        """Another unfinished run of this coordinator owns the track (and its badge)."""
        task = self._tasks.get(track_id)
        return task is not None and not task.done() and task is not asyncio.current_task()

    async def _run(self, track: Track, config: SourceConfig) -> CoordinatorState:
        """Error boundary around sync_track: logs, never raises (except cancellation)."""
        set_correlation_id(f"sync-{track.id}")
        try:
            return await self.sync_track(track, config)
        except asyncio.CancelledError:
            if not self._broadcaster.is_synced(track.id):
                self._broadcaster.clear(track.id)
            raise
        except Exception:
            logger.exception("Background sync of '%s' (%s) crashed", track.title, track.id)
            if not self._broadcaster.is_synced(track.id):
                self._broadcaster.clear(track.id)
            return CoordinatorState.FAILED

    async def sync_track(
        self, track: Track, config: SourceConfig | None = None
    ) -> CoordinatorState:
        """Run the state machine for one track and return the final state."""
        config = config or self._default_config

        # checking_cache
        existing = await self._store.get(track.id)
        if existing is not None and existing.is_synced:
            self._broadcaster.add_synced(track.id)
            logger.debug("Track %s already synced", track.id)
            return CoordinatorState.READY
        if existing is not None:
            if self._has_live_run(track.id):
                logger.info("Track %s is being polled by another run, not restarting it", track.id)
                return CoordinatorState.PENDING_POLL
            ceiling = timedelta(seconds=self._settings.max_poll_duration)
            if existing.is_abandoned(self._now(), ceiling):
                logger.info("Pending row of %s was abandoned, resolving again", track.id)
            else:
                logger.info("Pending row of %s has no poller anymore, resolving again", track.id)

        # resolving
        self._broadcaster.add_syncing(track.id)
        result = await self._orchestrator.resolve(track, config)
        if isinstance(result, ResolutionFailure):
            logger.info("Sync of '%s' failed: %s", track.title, result.message)
            self._broadcaster.clear(track.id)
            return CoordinatorState.FAILED

        if result.is_ready:
            return await self._complete(track, result, result.stream_url)

        if result.status.is_pending:
            return await self._pending_poll(track, result)

        self._broadcaster.clear(track.id)
        return CoordinatorState.FAILED

    async def _group_mapping_id(self, track: Track, candidate: StreamCandidate) -> str | None:
        if not track.album_id or candidate.bulk_job is None:
            return None
        return await self._store.get_or_create_group_mapping(
            album_id=track.album_id,
            album_title=track.album or track.title,
            artist_name=track.artist,
            bulk_job=candidate.bulk_job,
        )

    async def _complete(
        self, track: Track, candidate: StreamCandidate, stream_url: str | None
    ) -> CoordinatorState:
        """ready: persist the row with its link, THEN mark synced."""
        try:
            group_id = await self._group_mapping_id(track, candidate)
            await self._store.put(
                TrackFileMapping.for_candidate(track, candidate, stream_url, group_id)
            )
        except StoreWriteError as e:
            logger.error("Could not store link for '%s': %s", track.title, e.message)
            self._broadcaster.clear(track.id)
            return CoordinatorState.FAILED

        self._broadcaster.add_synced(track.id)
        logger.info("Synced '%s' via %s", track.title, candidate.source_name)
        return CoordinatorState.READY

    async def _pending_poll(self, track: Track, candidate: StreamCandidate) -> CoordinatorState:
        """pending_poll: persist a null-link row, then poll the job until done."""
        try:
            group_id = await self._group_mapping_id(track, candidate)
            await self._store.put(
                TrackFileMapping.for_candidate(track, candidate, None, group_id)
            )
        except StoreWriteError as e:
            logger.error("Could not store pending row for '%s': %s", track.title, e.message)
            self._broadcaster.clear(track.id)
            return CoordinatorState.FAILED

        self._broadcaster.add_downloading(track.id)
        started = self._clock()
        progress = candidate.progress

        while True:
            await self._sleep(self._settings.poll_interval)
            elapsed = self._clock() - started

            try:
                polled: StreamCandidate | None = await self._orchestrator.poll(candidate)
            except Exception as e:
                logger.warning("Poll for '%s' failed, will retry: %s", track.title, e)
                polled = None

            if polled is not None:
                if polled.is_ready:
                    return await self._finish_pending(track, candidate, polled)
                if polled.status.is_failure:
                    logger.info(
                        "Job for '%s' ended with %s", track.title, polled.status.value
                    )
                    self._broadcaster.clear(track.id)
                    return CoordinatorState.FAILED
                progress = polled.progress

            if progress <= 0.0 and elapsed > self._settings.stall_timeout:
                logger.info("'%s' stuck at 0%% for %.0fs, giving up", track.title, elapsed)
                self._broadcaster.clear(track.id)
                return CoordinatorState.TIMED_OUT
            if elapsed >= self._settings.max_poll_duration:
                logger.info(
                    "'%s' still at %.0f%% after %.0fs, giving up", track.title, progress, elapsed
                )
                self._broadcaster.clear(track.id)
                return CoordinatorState.TIMED_OUT

    async def _finish_pending(
        self, track: Track, pending: StreamCandidate, ready: StreamCandidate
    ) -> CoordinatorState:
        if ready.stream_url is None:
            logger.error("Job for '%s' reported ready without a link", track.title)
            self._broadcaster.clear(track.id)
            return CoordinatorState.FAILED
        try:
            updated = await self._store.set_direct_link(track.id, ready.stream_url)
        except StoreWriteError as e:
            logger.error("Could not store link for '%s': %s", track.title, e.message)
            self._broadcaster.clear(track.id)
            return CoordinatorState.FAILED

        if updated is None:
            # Row was deleted while we polled, write it again
            return await self._complete(track, pending, ready.stream_url)

        self._broadcaster.add_synced(track.id)
        logger.info("Download of '%s' complete", track.title)
        return CoordinatorState.READY

    async def shutdown(self) -> None:
        """Cancel every in-flight run and wait for them to finish."""
        self._closed = True
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d background sync runs", len(tasks))
        self._tasks.clear()


__all__ = ["BackgroundSyncCoordinator"]
