"""Streaming-scrape source adapters (Tidal proxy mirrors).

Both backends speak the same API: /search/?s= returns Tidal track items, /track/?id=&quality=
returns a playback manifest. They differ in how hard they try:

- squidwtf races every mirror per request and takes the first query whose best hit
  scores >= 80.
- monochrome walks its mirrors in order, keeps the best hit over all queries, and settles
  for a low-confidence hit (>= 40) when nothing reached 80.

These backends hand out direct stream URLs, so candidates are always READY and poll() has
nothing to do.
"""

import logging
from abc import abstractmethod
from typing import Any

from tracksync.domain.entities import CandidateStatus, JobHandle, StreamCandidate, Track
from tracksync.domain.exceptions import SourceUnreachableError
from tracksync.domain.ports import ISourceAdapter
from tracksync.domain.value_objects import AudioQuality, score_remote_match
from tracksync.infrastructure.integrations.mirror_client import (
    TidalMirrorClient,
    artist_name_of,
)

logger = logging.getLogger(__name__)

ACCEPT_SCORE = 80.0
LOW_CONFIDENCE_SCORE = 40.0

ScoredItem = tuple[dict[str, Any], float]


def search_queries(track: Track) -> list[str]:
    """Queries tried in order: "artist title", "title artist", "title"."""
    queries: list[str] = []
    for query in (f"{track.artist} {track.title}", f"{track.title} {track.artist}", track.title):
        query = query.strip()
        if query and query not in queries:
            queries.append(query)
    return queries


def best_scored(items: list[dict[str, Any]], track: Track) -> ScoredItem | None:
    """Highest scoring item (first one wins ties), or None for an empty list."""
    best: ScoredItem | None = None
    for item in items:
        if item.get("id") is None:
            continue
        score = score_remote_match(
            item.get("title") or "", artist_name_of(item), track.title, track.artist
        )
        if best is None or score > best[1]:
            best = (item, score)
    return best


class TidalMirrorSourceAdapter(ISourceAdapter):
    """Shared search/stream flow; subclasses decide which hit is good enough."""

    def __init__(self, client: TidalMirrorClient) -> None:
        """Initialize adapter.

        Args:
            client: Mirror client for this backend
        """
        self._client = client

    @property
    def source_name(self) -> str:
        """Source id (taken from the mirror client)."""
        return self._client.source_name

    async def _search_query(self, query: str, track: Track) -> ScoredItem | None:
        items = await self._client.search_tracks(query)
        return best_scored(items, track)

    @abstractmethod
    async def _pick(self, track: Track) -> ScoredItem | None:
        """Choose the hit to stream, or None."""
        pass

    async def search(self, track: Track, quality: AudioQuality) -> list[StreamCandidate]:
        """Find a stream for a track.

        Raises:
            SourceUnreachableError: If every mirror failed for every query
        """
        picked = await self._pick(track)
        if picked is None:
            logger.info("%s: no acceptable hit for '%s'", self.source_name, track.title)
            return []

        item, score = picked
        stream = await self._client.get_stream(str(item["id"]), quality.to_tidal_quality())
        logger.info(
            "%s: '%s' -> Tidal %s (score %.0f, %s)",
            self.source_name,
            track.title,
            item["id"],
            score,
            stream.quality,
        )
        return [
            StreamCandidate(
                source_name=self.source_name,
                status=CandidateStatus.READY,
                stream_url=stream.stream_url,
                quality=stream.quality,
                progress=100.0,
                matched_text=item.get("title") or None,
                match_score=score,
            )
        ]

    async def poll(self, job: JobHandle) -> StreamCandidate:
        """Streaming backends have no pending jobs."""
        logger.warning("%s: poll() called for job %s", self.source_name, job.job_id)
        return StreamCandidate(source_name=self.source_name, status=CandidateStatus.ERROR)

    async def is_available(self) -> bool:
        """At least one mirror answers."""
        return await self._client.is_reachable()


class SquidWtfSourceAdapter(TidalMirrorSourceAdapter):
    """Races all mirrors; first query with a hit >= 80 wins."""

    async def _pick(self, track: Track) -> ScoredItem | None:
        last_error: SourceUnreachableError | None = None
        answered = False
        for query in search_queries(track):
            try:
                best = await self._search_query(query, track)
            except SourceUnreachableError as e:
                last_error = e
                continue
            answered = True
            if best is not None and best[1] >= ACCEPT_SCORE:
                return best
        if not answered and last_error is not None:
            raise last_error
        return None


class MonochromeSourceAdapter(TidalMirrorSourceAdapter):
    """Sequential mirrors; accepts >= 80 at once, else the best overall if >= 40."""

    async def _pick(self, track: Track) -> ScoredItem | None:
        overall: ScoredItem | None = None
        last_error: SourceUnreachableError | None = None
        answered = False
        for query in search_queries(track):
            try:
                best = await self._search_query(query, track)
            except SourceUnreachableError as e:
                last_error = e
                continue
            answered = True
            if best is None:
                continue
            if best[1] >= ACCEPT_SCORE:
                return best
            if overall is None or best[1] > overall[1]:
                overall = best

        if not answered and last_error is not None:
            raise last_error
        if overall is not None and overall[1] >= LOW_CONFIDENCE_SCORE:
            logger.info(
                "%s: low-confidence hit for '%s' (score %.0f)",
                self.source_name,
                track.title,
                overall[1],
            )
            return overall
        return None


__all__ = [
    "MonochromeSourceAdapter",
    "SquidWtfSourceAdapter",
    "TidalMirrorSourceAdapter",
    "best_scored",
    "search_queries",
]
