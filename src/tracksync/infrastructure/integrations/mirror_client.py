"""Clients for the public Tidal proxy mirrors.

Hey future me - these mirrors are community-run and flaky. Any of them can be down, slow, or
answering 5xx at any moment. Two strategies:

- race(): fire at ALL mirrors at once, first good answer wins, the rest get cancelled.
  Tail latency is that of the fastest healthy mirror, no serial timeout pile-up.
- first_available(): walk the list in order, stop at the first good answer. Fewer requests,
  slower when the first mirrors are dead.

Each request carries its own timeout, and each mirror has a CircuitBreaker so a mirror that
keeps failing sits out for a minute instead of burning a timeout on every lookup.
"""

import asyncio
import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from tracksync.domain.exceptions import ExternalServiceError, SourceUnreachableError
from tracksync.infrastructure.integrations.http_pool import PooledClientMixin
from tracksync.infrastructure.observability.health import CircuitBreaker

logger = logging.getLogger(__name__)

BTS_MANIFEST = "application/vnd.tidal.bts"
DASH_MANIFEST = "application/dash+xml"
_DASH_INIT = re.compile(r'initialization="([^"]+)"')

# Failures worth moving on from; anything else is a bug and should propagate
_MIRROR_ERRORS = (httpx.HTTPError, TimeoutError, ValueError)


class MirrorRacer(PooledClientMixin):
    """Issues GET requests against a list of interchangeable mirrors."""

    def __init__(
        self,
        source_name: str,
        mirrors: list[str],
        client: httpx.AsyncClient | None = None,
        request_timeout: float = 9.0,
        user_agent: str = "Mozilla/5.0",
        breaker_threshold: int = 3,
        breaker_timeout: float = 60.0,
    ) -> None:
        """Initialize racer.

        Args:
            source_name: Source id used in errors and logs
            mirrors: Base URLs, in preference order
            client: Optional injected httpx client
            request_timeout: Per-request timeout in seconds
            user_agent: User-Agent header (some mirrors block default clients)
            breaker_threshold: Consecutive failures before a mirror sits out
            breaker_timeout: Seconds a tripped mirror sits out
        """
        if not mirrors:
            raise ValueError(f"{source_name}: at least one mirror is required")
        self.source_name = source_name
        self.mirrors = [mirror.rstrip("/") for mirror in mirrors]
        self._http = client
        self.request_timeout = request_timeout
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._breakers = {
            mirror: CircuitBreaker(breaker_threshold, breaker_timeout, name=mirror)
            for mirror in self.mirrors
        }

    def _usable_mirrors(self) -> list[str]:
        usable = [mirror for mirror in self.mirrors if self._breakers[mirror].can_attempt()]
        # Every breaker open: better to try all than to fail without a request
        return usable or list(self.mirrors)

    async def _fetch(self, mirror: str, path: str) -> Any:
        client = await self._get_client()
        try:
            response = await asyncio.wait_for(
                client.get(f"{mirror}{path}", headers=self._headers),
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except _MIRROR_ERRORS:
            self._breakers[mirror].record_failure()
            raise
        self._breakers[mirror].record_success()
        return data

    async def race(self, path: str) -> Any:
        """GET path from all usable mirrors concurrently; first success wins.

        Returns:
            Decoded JSON of the winning response

        Raises:
            SourceUnreachableError: If every mirror failed
        """
        mirrors = self._usable_mirrors()
        loop = asyncio.get_running_loop()
        started = loop.time()
        tasks = {asyncio.create_task(self._fetch(mirror, path)): mirror for mirror in mirrors}
        errors: list[str] = []

        try:
            pending: set[asyncio.Task[Any]] = set(tasks)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    error = task.exception()
                    if error is None:
                        logger.debug(
                            "%s: fastest mirror %s answered %s in %.0fms",
                            self.source_name,
                            tasks[task],
                            path,
                            (loop.time() - started) * 1000,
                        )
                        return task.result()
                    if not isinstance(error, _MIRROR_ERRORS):
                        raise error
                    errors.append(f"{tasks[task]}: {error!r}")
        finally:
            losers = [task for task in tasks if not task.done()]
            for task in losers:
                task.cancel()
            if losers:
                await asyncio.gather(*losers, return_exceptions=True)

        logger.warning("%s: all %d mirrors failed for %s", self.source_name, len(mirrors), path)
        raise SourceUnreachableError(
            self.source_name, f"all mirrors failed: {'; '.join(errors[:3])}"
        )

    async def first_available(self, path: str) -> Any:
        """GET path from mirrors one by one; first success wins.

        Raises:
            SourceUnreachableError: If every mirror failed
        """
        errors: list[str] = []
        for mirror in self._usable_mirrors():
            try:
                return await self._fetch(mirror, path)
            except _MIRROR_ERRORS as e:
                logger.info("%s: mirror %s failed for %s: %r", self.source_name, mirror, path, e)
                errors.append(f"{mirror}: {e!r}")

        raise SourceUnreachableError(
            self.source_name, f"all mirrors failed: {'; '.join(errors[:3])}"
        )

    async def is_reachable(self) -> bool:
        """True if at least one mirror answers its root URL without a 5xx."""
        client = await self._get_client()

        async def _probe(mirror: str) -> bool:
            try:
                response = await client.get(f"{mirror}/", headers=self._headers, timeout=5.0)
            except httpx.HTTPError:
                return False
            return response.status_code < 500

        results = await asyncio.gather(*(_probe(mirror) for mirror in self.mirrors))
        return any(results)


@dataclass(frozen=True)
class TidalStream:
    """Decoded stream of one Tidal track."""

    stream_url: str
    quality: str
    bit_depth: int | None = None
    sample_rate: int | None = None


def decode_manifest(track_data: dict[str, Any]) -> str:
    """Extract a playable URL from a Tidal playback manifest.

    BTS manifests are base64 JSON with a "urls" list; DASH manifests (hi-res) are base64
    XML where the initialization segment URL is the one we can hand to a player.

    Raises:
        ExternalServiceError: If the manifest is missing, unknown or has no URL
    """
    mime_type = track_data.get("manifestMimeType")
    manifest = track_data.get("manifest")
    if not manifest:
        raise ExternalServiceError("Track data has no manifest")

    try:
        decoded = base64.b64decode(manifest).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise ExternalServiceError(f"Manifest is not valid base64: {e}") from e

    if mime_type == BTS_MANIFEST:
        try:
            urls = json.loads(decoded).get("urls") or []
        except ValueError as e:
            raise ExternalServiceError(f"BTS manifest is not valid JSON: {e}") from e
        if not urls:
            raise ExternalServiceError("No stream URLs in manifest")
        return str(urls[0])

    if mime_type == DASH_MANIFEST:
        match = _DASH_INIT.search(decoded)
        if not match:
            raise ExternalServiceError("Could not parse DASH manifest")
        return match.group(1).replace("&amp;", "&")

    raise ExternalServiceError(f"Unknown manifest type: {mime_type}")


def artist_name_of(item: dict[str, Any]) -> str:
    """Main artist of a Tidal search item ("artist" or first of "artists")."""
    artist = item.get("artist")
    if isinstance(artist, dict) and artist.get("name"):
        return str(artist["name"])
    artists = item.get("artists") or []
    if artists and isinstance(artists[0], dict):
        return str(artists[0].get("name") or "")
    return ""


class TidalMirrorClient:
    """Tidal search and stream lookups through a MirrorRacer."""

    def __init__(self, racer: MirrorRacer, parallel: bool = True) -> None:
        """Initialize client.

        Args:
            racer: Mirror racer holding the mirror list
            parallel: Race all mirrors (True) or try them in order (False)
        """
        self._racer = racer
        self._parallel = parallel

    @property
    def source_name(self) -> str:
        """Source id of the underlying racer."""
        return self._racer.source_name

    async def is_reachable(self) -> bool:
        """True if any mirror answers."""
        return await self._racer.is_reachable()

    async def _get(self, path: str) -> Any:
        if self._parallel:
            return await self._racer.race(path)
        return await self._racer.first_available(path)

    async def search_tracks(self, query: str) -> list[dict[str, Any]]:
        """Search tracks; returns raw Tidal items."""
        data = await self._get(f"/search/?{httpx.QueryParams({'s': query})}")
        if not isinstance(data, dict):
            return []
        nested = data.get("data")
        items = (nested.get("items") if isinstance(nested, dict) else None) or data.get("items")
        logger.debug("%s: %d results for '%s'", self.source_name, len(items or []), query)
        return list(items or [])

    async def get_stream(self, tidal_id: str, quality: str) -> TidalStream:
        """Get a playable stream for a Tidal track id.

        Raises:
            SourceUnreachableError: If no mirror answered
            ExternalServiceError: If the answer had no usable manifest
        """
        params = httpx.QueryParams({"id": tidal_id, "quality": quality})
        data = await self._get(f"/track/?{params}")
        track_data = data.get("data") if isinstance(data, dict) else None
        if not isinstance(track_data, dict):
            raise ExternalServiceError(f"{self.source_name}: no track data for {tidal_id}")

        return TidalStream(
            stream_url=decode_manifest(track_data),
            quality=track_data.get("audioQuality") or quality,
            bit_depth=track_data.get("bitDepth"),
            sample_rate=track_data.get("sampleRate"),
        )
