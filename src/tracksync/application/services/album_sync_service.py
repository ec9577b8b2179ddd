"""Album sync: one torrent for a whole album, tracks resolved one by one.

Hey future me - syncing an album track-by-track through the coordinator would search and add
a torrent PER TRACK. Here we search ONCE for "{album} {artist}", pick one torrent, and map
every track to a file inside it. Tracks are processed sequentially with a delay in between,
because Real-Debrid rate limits selectFiles bursts hard.

Per track: match file -> select -> ready? store link : store null row + poll (album budget:
30s total, 10s stuck at 0%). Anything that doesn't end up with a link is cleared and counted
as failed. The report goes back to the caller (UI shows "12 synced, 2 not found").
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from tracksync.application.services.sync_state import SyncStateBroadcaster
from tracksync.config import SyncSettings
from tracksync.domain.dtos import BulkJobListing
from tracksync.domain.entities import StreamCandidate, Track, TrackFileMapping
from tracksync.domain.exceptions import DomainException, StoreWriteError
from tracksync.domain.ports import IBulkSourceAdapter, IMappingStore
from tracksync.infrastructure.providers.realdebrid_provider import find_matching_file

logger = logging.getLogger(__name__)


@dataclass
class AlbumSyncReport:
    """Outcome of one album sync."""

    total: int
    synced: int = 0
    already_synced: int = 0
    failed: int = 0
    job_title: str | None = None
    failed_track_ids: list[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """Every track is playable."""
        return self.failed == 0 and self.synced + self.already_synced == self.total


class AlbumSyncService:
    """Syncs all tracks of an album through one bulk job."""

    def __init__(
        self,
        adapter: IBulkSourceAdapter,
        store: IMappingStore,
        broadcaster: SyncStateBroadcaster,
        settings: SyncSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize service.

        Args:
            adapter: Bulk-capable source (Real-Debrid)
            store: Mapping store
            broadcaster: Sync state shown to the UI
            settings: Track delay and album poll budget
            sleep: Sleep function (tests pass a fake)
            clock: Monotonic clock for the poll budget
        """
        self._adapter = adapter
        self._store = store
        self._broadcaster = broadcaster
        self._settings = settings
        self._sleep = sleep
        self._clock = clock

    async def sync_album(
        self, tracks: Sequence[Track], album_title: str, artist_name: str
    ) -> AlbumSyncReport:
        """Sync every track of an album.

        Args:
            tracks: Album tracks (album_id of the first track keys the group mapping)
            album_title: Album title used in the bulk search
            artist_name: Album artist used in the bulk search

        Returns:
            Counts of synced, already synced and failed tracks
        """
        report = AlbumSyncReport(total=len(tracks))
        if not tracks:
            return report

        # Store first: a synced track must never be shown as syncing again
        existing = await self._store.get_many([track.id for track in tracks])
        already = {mapping.track_id for mapping in existing if mapping.is_synced}
        for track_id in already:
            self._broadcaster.add_synced(track_id)
        report.already_synced = len(already)

        remaining = [track for track in tracks if track.id not in already]
        if not remaining:
            logger.info("Album '%s' already synced", album_title)
            return report
        for track in remaining:
            self._broadcaster.add_syncing(track.id)

        query = f"{album_title} {artist_name}"
        try:
            listing = await self._adapter.find_bulk_job(query, len(tracks))
        except DomainException as e:
            logger.warning("Album search for '%s' failed: %s", query, e.message)
            listing = None

        if listing is None:
            logger.info("No usable torrent for album '%s'", query)
            self._fail_all(remaining, report)
            return report

        report.job_title = listing.job.title
        group_id = await self._group_mapping_id(tracks[0], album_title, artist_name, listing)

        for index, track in enumerate(remaining):
            if index > 0:
                await self._sleep(self._settings.album_track_delay)
            if await self._sync_one(track, listing, group_id):
                report.synced += 1
            else:
                report.failed += 1
                report.failed_track_ids.append(track.id)
                self._broadcaster.clear(track.id)

        logger.info(
            "Album '%s': %d synced, %d already synced, %d failed",
            album_title,
            report.synced,
            report.already_synced,
            report.failed,
        )
        return report

    def _fail_all(self, tracks: Sequence[Track], report: AlbumSyncReport) -> None:
        for track in tracks:
            self._broadcaster.clear(track.id)
            report.failed_track_ids.append(track.id)
        report.failed += len(tracks)

    async def _group_mapping_id(
        self, first: Track, album_title: str, artist_name: str, listing: BulkJobListing
    ) -> str | None:
        if not first.album_id:
            return None
        try:
            return await self._store.get_or_create_group_mapping(
                album_id=first.album_id,
                album_title=album_title,
                artist_name=artist_name,
                bulk_job=listing.job,
            )
        except StoreWriteError as e:
            # Rows still work without a group, they just aren't linked to the album
            logger.warning("Could not store album mapping for '%s': %s", album_title, e.message)
            return None

    async def _sync_one(
        self, track: Track, listing: BulkJobListing, group_id: str | None
    ) -> bool:
        match = find_matching_file(listing.files, track.title)
        if match is None:
            logger.info("No file in '%s' matches '%s'", listing.job.title, track.title)
            return False
        audio_file, _ = match

        try:
            candidate = await self._adapter.materialize(listing.job, audio_file)
        except DomainException as e:
            logger.warning("Selecting '%s' failed: %s", audio_file.filename, e.message)
            return False

        try:
            if candidate.is_ready:
                mapping = TrackFileMapping.for_candidate(
                    track, candidate, candidate.stream_url, group_id
                )
                await self._store.put(mapping)
                self._broadcaster.add_synced(track.id)
                logger.info("Track synced: '%s' -> %s", track.title, audio_file.filename)
                return True

            if not candidate.status.is_pending:
                logger.info("'%s' ended with %s", track.title, candidate.status.value)
                return False

            self._broadcaster.add_downloading(track.id)
            await self._store.put(TrackFileMapping.for_candidate(track, candidate, None, group_id))
            link = await self._poll(track, candidate)
            if link is None:
                return False
            if await self._store.set_direct_link(track.id, link) is None:
                # Row was deleted while we polled, write it again with the link
                await self._store.put(
                    TrackFileMapping.for_candidate(track, candidate, link, group_id)
                )
        except StoreWriteError as e:
            logger.error("Could not store '%s': %s", track.title, e.message)
            return False

        self._broadcaster.add_synced(track.id)
        logger.info("Track synced after download: '%s'", track.title)
        return True

    async def _poll(self, track: Track, candidate: StreamCandidate) -> str | None:
        """Poll a pending file within the album budget. Returns the link or None."""
        if candidate.job is None:
            logger.warning("Pending file for '%s' has no job handle", track.title)
            return None
        started = self._clock()
        progress = candidate.progress

        while self._clock() - started < self._settings.album_poll_timeout:
            await self._sleep(self._settings.album_poll_interval)
            try:
                polled = await self._adapter.poll(candidate.job)
            except DomainException as e:
                logger.warning("Poll for '%s' failed: %s", track.title, e.message)
                continue

            if polled.is_ready:
                return polled.stream_url
            if polled.status.is_failure:
                return None
            progress = polled.progress
            if progress <= 0.0 and self._clock() - started > self._settings.stall_timeout:
                logger.info("'%s' stuck at 0%%, aborting", track.title)
                return None

        logger.info(
            "'%s' not ready after %.0fs (%.0f%%)",
            track.title,
            self._settings.album_poll_timeout,
            progress,
        )
        return None


__all__ = ["AlbumSyncReport", "AlbumSyncService"]
