"""Deezer public API client for track metadata.

Hey future me - Deezer's public API works WITHOUT authentication, which makes it the
canonical metadata provider here: every Track that enters the sync pipeline was built from
a Deezer payload. Rate limit is 50 requests per 5 seconds per IP, and Deezer signals it
with HTTP 200 plus {"error": {"code": 4}} in the body (not a 429!). We use the shared
RateLimiter and retry on that code.
"""

import logging
from typing import Any

import httpx

from tracksync.config import DeezerSettings
from tracksync.domain.entities import Track
from tracksync.domain.exceptions import ValidationError
from tracksync.domain.ports import IMetadataProvider
from tracksync.infrastructure.integrations.http_pool import PooledClientMixin
from tracksync.infrastructure.rate_limiter import RateLimiter, get_deezer_limiter

logger = logging.getLogger(__name__)

# Deezer "Quota limit exceeded" error code
_QUOTA_ERROR_CODE = 4


def _is_quota_error(data: Any) -> bool:
    if not isinstance(data, dict) or "error" not in data:
        return False
    error = data.get("error")
    return isinstance(error, dict) and error.get("code") == _QUOTA_ERROR_CODE


class DeezerMetadataProvider(PooledClientMixin, IMetadataProvider):
    """IMetadataProvider over the public Deezer API."""

    def __init__(
        self,
        settings: DeezerSettings,
        client: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize Deezer provider.

        Args:
            settings: Deezer configuration
            client: Optional injected httpx client
            limiter: Rate limiter (process-wide Deezer limiter by default)
        """
        self.settings = settings
        self._http = client
        self._limiter = limiter or get_deezer_limiter()
        self._base_url = settings.api_url.rstrip("/")

    # All Deezer calls go through here so the rate limit is respected in one place
    async def _api_request(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        """Make a rate-limited GET request with retry on Deezer quota errors.

        Args:
            endpoint: API path (e.g. "/search/track")
            params: Query parameters

        Returns:
            The last response (still a quota error if retries ran out)
        """
        client = await self._get_client()
        max_retries = self.settings.max_retries

        for attempt in range(max_retries + 1):
            async with self._limiter:
                response = await client.get(
                    f"{self._base_url}{endpoint}",
                    params=params,
                    headers={"Accept": "application/json"},
                    timeout=self.settings.request_timeout,
                )

            if response.status_code != 200:
                return response
            try:
                data = response.json()
            except ValueError:
                return response
            if not _is_quota_error(data):
                return response

            if attempt >= max_retries:
                logger.error("Deezer API rate limited after %d retries: %s", max_retries, endpoint)
                return response
            wait_time = await self._limiter.handle_rate_limit_response()
            logger.warning(
                "Deezer rate limit (attempt %d/%d): waited %.1fs, retrying %s",
                attempt + 1,
                max_retries,
                wait_time,
                endpoint,
            )

        return response

    async def search_tracks(self, query: str, limit: int = 25) -> list[Track]:
        """Search tracks on Deezer.

        Args:
            query: Free text ("artist title" etc.)
            limit: Maximum results (Deezer caps at 100)

        Returns:
            Tracks in Deezer's relevance order; malformed items are skipped
        """
        try:
            response = await self._api_request(
                "/search/track", params={"q": query, "limit": min(limit, 100)}
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("Deezer track search failed: %s", e)
            raise

        tracks = []
        for item in data.get("data") or []:
            track = self._parse_track(item)
            if track is not None:
                tracks.append(track)
        return tracks

    async def get_track(self, track_id: str) -> Track | None:
        """Get one track by Deezer id.

        Returns:
            Track, or None when Deezer does not know the id
        """
        try:
            response = await self._api_request(f"/track/{track_id}")
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.error("Deezer get_track failed: %s", e)
            raise

        data = response.json()
        if not isinstance(data, dict) or "error" in data:
            return None
        return self._parse_track(data)

    @staticmethod
    def _parse_track(data: dict[str, Any]) -> Track | None:
        """Map a Deezer track payload to a Track (None when unusable)."""
        artist_data = data.get("artist") or {}
        album_data = data.get("album") or {}
        try:
            return Track(
                id=str(data["id"]),
                title=data.get("title") or "",
                artist=artist_data.get("name") or "Unknown Artist",
                album=album_data.get("title") or None,
                album_id=str(album_data["id"]) if album_data.get("id") else None,
                duration=int(data.get("duration") or 0),
                cover_url=album_data.get("cover_medium"),
                artist_id=str(artist_data["id"]) if artist_data.get("id") else None,
            )
        except (KeyError, ValidationError) as e:
            logger.debug("Skipping malformed Deezer track %s: %s", data.get("id"), e)
            return None


__all__ = ["DeezerMetadataProvider"]
