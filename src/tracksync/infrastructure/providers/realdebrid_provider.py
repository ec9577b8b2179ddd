"""Real-Debrid source adapter.

Hey future me - this is the torrent/debrid backend. The flow for ONE track:

1. Ask the torrent index for "{album} {artist}" (or "{title} {artist}" for singles)
2. Rank the hits by fuzzy similarity to the query, keep the best max_torrents
3. For each torrent: addMagnet -> info -> audio files -> first file passing title_matches
4. selectFiles for that file, give RD a moment, read info again
5. downloaded + links -> unrestrict -> READY, anything else -> pending with a JobHandle

Torrents are processed ONE AT A TIME. Firing 8 addMagnets in parallel gets the key rate
limited and leaves 8 orphan torrents on the user's account. The first torrent holding a
matching file wins; we don't look at the rest.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace

from tracksync.config import RealDebridSettings
from tracksync.domain.dtos import (
    BulkJobListing,
    DebridAccount,
    DebridTorrentInfo,
    TorrentSearchResult,
)
from tracksync.domain.entities import (
    AudioFile,
    BulkJob,
    CandidateStatus,
    JobHandle,
    StreamCandidate,
    Track,
)
from tracksync.domain.exceptions import ExternalServiceError, InvalidCredentialsError
from tracksync.domain.ports import IBulkSourceAdapter, ICredentialStore, ITorrentIndex
from tracksync.domain.value_objects import (
    REAL_DEBRID,
    AudioQuality,
    quality_from_filename,
    rank_by_similarity,
    title_matches,
)
from tracksync.infrastructure.integrations.realdebrid_client import RealDebridClient

logger = logging.getLogger(__name__)

# Real-Debrid torrent states -> candidate status. Unknown states count as queued.
_STATUS_MAP: dict[str, CandidateStatus] = {
    "downloaded": CandidateStatus.READY,
    "downloading": CandidateStatus.DOWNLOADING,
    "compressing": CandidateStatus.DOWNLOADING,
    "uploading": CandidateStatus.DOWNLOADING,
    "queued": CandidateStatus.QUEUED,
    "magnet_conversion": CandidateStatus.QUEUED,
    "waiting_files_selection": CandidateStatus.QUEUED,
    "error": CandidateStatus.ERROR,
    "magnet_error": CandidateStatus.ERROR,
    "virus": CandidateStatus.ERROR,
    "dead": CandidateStatus.DEAD,
}


def map_status(status: str) -> CandidateStatus:
    """Map a Real-Debrid torrent status string to a CandidateStatus."""
    return _STATUS_MAP.get(status, CandidateStatus.QUEUED)


def build_query(track: Track) -> str:
    """Torrent index query for a track: album-level when album context exists."""
    if track.has_album_context:
        return f"{track.album} {track.artist}"
    return f"{track.title} {track.artist}"


def find_matching_file(
    files: tuple[AudioFile, ...], title: str
) -> tuple[AudioFile, str] | None:
    """First file whose name (or full path) passes the title matcher.

    Returns:
        (file, text that matched) or None
    """
    for audio_file in files:
        if title_matches(audio_file.filename, title):
            return audio_file, audio_file.filename
        if title_matches(audio_file.path, title):
            return audio_file, audio_file.path
    return None


def pick_link(info: DebridTorrentInfo, audio_file: AudioFile | None) -> str | None:
    """Hoster link belonging to a file.

    RD returns one link per selected file, in file order. With a single selected file
    that's simply links[0].
    """
    if not info.links:
        return None
    if audio_file is not None:
        selected_ids = [f.id for f in info.files if f.selected]
        if audio_file.id in selected_ids:
            index = selected_ids.index(audio_file.id)
            if index < len(info.links):
                return info.links[index]
    return info.links[0]


class RealDebridSourceAdapter(IBulkSourceAdapter):
    """ISourceAdapter backed by a public torrent index plus Real-Debrid."""

    def __init__(
        self,
        client: RealDebridClient,
        index: ITorrentIndex,
        credentials: ICredentialStore,
        settings: RealDebridSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize adapter.

        Args:
            client: Real-Debrid API client
            index: Torrent index to search
            credentials: Where the user's API key lives
            settings: Real-Debrid configuration (max_torrents, settle delay)
            sleep: Sleep function (tests pass a no-op)
        """
        self._client = client
        self._index = index
        self._credentials = credentials
        self._settings = settings
        self._sleep = sleep

    @property
    def source_name(self) -> str:
        """Source id."""
        return REAL_DEBRID

    async def _require_key(self) -> str:
        api_key = await self._credentials.get_api_key()
        if not api_key:
            raise InvalidCredentialsError(REAL_DEBRID, "no API key configured")
        return api_key

    async def verify(self) -> DebridAccount:
        """Verify the configured API key.

        Raises:
            InvalidCredentialsError: If no key is configured or RD rejects it
        """
        api_key = await self._require_key()
        account = await self._client.verify(api_key)
        logger.info(
            "Real-Debrid key verified for %s (premium=%s)", account.username, account.premium
        )
        return account

    async def _ranked_torrents(self, query: str) -> list[TorrentSearchResult]:
        results = await self._index.search(query)
        order = rank_by_similarity(query, [result.name for result in results])
        return [results[index] for index in order][: self._settings.max_torrents]

    async def _load_listing(
        self, api_key: str, torrent: TorrentSearchResult
    ) -> BulkJobListing | None:
        """Add a torrent to the account and read its audio files.

        A torrent RD refuses (bad magnet, 4xx) is skipped, not fatal.
        """
        try:
            torrent_id = await self._client.add_magnet(api_key, torrent.magnet)
            info = await self._client.get_torrent_info(api_key, torrent_id)
        except ExternalServiceError as e:
            logger.info("Skipping torrent '%s': %s", torrent.name, e.message)
            return None

        job = BulkJob(
            job_id=info.torrent_id,
            title=info.filename or torrent.name,
            source_name=REAL_DEBRID,
        )
        logger.debug("Torrent '%s' has %d audio files", job.title, len(info.files))
        return BulkJobListing(job=job, files=info.files)

    async def search(self, track: Track, quality: AudioQuality) -> list[StreamCandidate]:
        """Find one candidate for a track (empty list when nothing matched).

        Raises:
            InvalidCredentialsError: Key missing or rejected
            SourceUnreachableError: RD unreachable
        """
        api_key = await self._require_key()
        await self._client.verify(api_key)

        query = build_query(track)
        torrents = await self._ranked_torrents(query)
        if not torrents:
            logger.info("Real-Debrid: no torrents for '%s'", query)
            return []

        for torrent in torrents:
            listing = await self._load_listing(api_key, torrent)
            if listing is None or not listing.files:
                continue
            match = find_matching_file(listing.files, track.title)
            if match is None:
                continue
            audio_file, matched_text = match
            logger.info(
                "Real-Debrid: '%s' matched file '%s' in '%s'",
                track.title,
                audio_file.filename,
                listing.job.title,
            )
            candidate = await self._select_and_read(api_key, listing.job, audio_file)
            return [replace(candidate, matched_text=matched_text)]

        logger.info("Real-Debrid: no file matched '%s' in %d torrents", track.title, len(torrents))
        return []

    async def _select_and_read(
        self, api_key: str, bulk_job: BulkJob, audio_file: AudioFile
    ) -> StreamCandidate:
        await self._client.select_files(api_key, bulk_job.job_id, [audio_file.id])
        # RD needs a moment before the selection shows up in info
        await self._sleep(self._settings.select_settle_delay)
        info = await self._client.get_torrent_info(api_key, bulk_job.job_id)
        return await self._candidate_from_info(api_key, info, bulk_job, audio_file)

    async def _candidate_from_info(
        self,
        api_key: str,
        info: DebridTorrentInfo,
        bulk_job: BulkJob,
        audio_file: AudioFile | None,
    ) -> StreamCandidate:
        status = map_status(info.status)
        job = JobHandle(
            source_name=REAL_DEBRID,
            job_id=info.torrent_id,
            file_ids=(audio_file.id,) if audio_file is not None else (),
        )
        name = audio_file.path if audio_file is not None else info.filename
        progress = min(max(info.progress, 0.0), 100.0)

        if status == CandidateStatus.READY:
            link = pick_link(info, audio_file)
            if link is None:
                # Downloaded but links not published yet
                status = CandidateStatus.DOWNLOADING
            else:
                unrestricted = await self._client.unrestrict_link(api_key, link)
                return StreamCandidate(
                    source_name=REAL_DEBRID,
                    status=CandidateStatus.READY,
                    stream_url=unrestricted.download,
                    quality=quality_from_filename(name or unrestricted.filename),
                    size=unrestricted.filesize or None,
                    progress=100.0,
                    job=job,
                    bulk_job=bulk_job,
                    file=audio_file,
                    matched_text=audio_file.filename if audio_file else unrestricted.filename,
                )

        return StreamCandidate(
            source_name=REAL_DEBRID,
            status=status,
            quality=quality_from_filename(name),
            progress=progress,
            job=job,
            bulk_job=bulk_job,
            file=audio_file,
            matched_text=audio_file.filename if audio_file else None,
        )

    async def poll(self, job: JobHandle) -> StreamCandidate:
        """Re-read a torrent and report the current candidate.

        A torrent that vanished from the account (4xx) comes back as an ERROR candidate.
        """
        api_key = await self._require_key()
        try:
            info = await self._client.get_torrent_info(api_key, job.job_id)
        except ExternalServiceError as e:
            logger.warning("Real-Debrid poll of %s failed: %s", job.job_id, e.message)
            return StreamCandidate(source_name=REAL_DEBRID, status=CandidateStatus.ERROR)

        audio_file = next((f for f in info.files if f.id in job.file_ids), None)
        bulk_job = BulkJob(job_id=info.torrent_id, title=info.filename, source_name=REAL_DEBRID)
        return await self._candidate_from_info(api_key, info, bulk_job, audio_file)

    async def find_bulk_job(self, query: str, expected_tracks: int) -> BulkJobListing | None:
        """Pick one torrent for a whole album.

        Prefers the first ranked torrent with at least half as many audio files as the
        album has tracks; otherwise the first torrent with any audio files.
        """
        api_key = await self._require_key()
        await self._client.verify(api_key)

        fallback: BulkJobListing | None = None
        for torrent in await self._ranked_torrents(query):
            listing = await self._load_listing(api_key, torrent)
            if listing is None or not listing.files:
                continue
            if len(listing.files) * 2 >= expected_tracks:
                logger.info(
                    "Album torrent for '%s': '%s' (%d files for %d tracks)",
                    query,
                    listing.job.title,
                    len(listing.files),
                    expected_tracks,
                )
                return listing
            if fallback is None:
                fallback = listing

        if fallback is not None:
            logger.info(
                "No complete torrent for '%s', using '%s' (%d files)",
                query,
                fallback.job.title,
                len(fallback.files),
            )
        return fallback

    async def materialize(self, bulk_job: BulkJob, file: AudioFile) -> StreamCandidate:
        """Select one file of an album torrent and return its candidate."""
        api_key = await self._require_key()
        return await self._select_and_read(api_key, bulk_job, file)

    async def is_available(self) -> bool:
        """Real-Debrid API reachable (no key needed)."""
        return await self._client.ping()


__all__ = [
    "RealDebridSourceAdapter",
    "build_query",
    "find_matching_file",
    "map_status",
    "pick_link",
]
