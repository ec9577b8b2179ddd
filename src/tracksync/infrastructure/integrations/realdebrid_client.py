"""Real-Debrid REST API client."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from tracksync.config import RealDebridSettings
from tracksync.domain.dtos import DebridAccount, DebridTorrentInfo, UnrestrictedLink
from tracksync.domain.entities import AudioFile
from tracksync.domain.exceptions import (
    ExternalServiceError,
    InvalidCredentialsError,
    SourceUnreachableError,
)
from tracksync.infrastructure.integrations.http_pool import PooledClientMixin
from tracksync.infrastructure.rate_limiter import RateLimiter, get_debrid_limiter

logger = logging.getLogger(__name__)

SOURCE = "real-debrid"
AUDIO_EXTENSIONS: tuple[str, ...] = (".mp3", ".flac", ".m4a", ".wav", ".aac", ".ogg")


def is_audio_path(path: str) -> bool:
    """True if the path ends in one of the supported audio extensions."""
    return path.lower().endswith(AUDIO_EXTENSIONS)


def _parse_files(raw_files: Any) -> tuple[AudioFile, ...]:
    if not isinstance(raw_files, list):
        return ()
    files = []
    for raw in raw_files:
        path = raw.get("path") or ""
        if not is_audio_path(path):
            continue
        files.append(AudioFile(id=int(raw["id"]), path=path, selected=raw.get("selected") == 1))
    return tuple(files)


# Hey future me, every call takes api_key explicitly instead of storing it on the client. The key
# belongs to the USER and can change at runtime (they paste a new one in settings), so the
# adapter asks the credential store each time and passes it down. Transport errors get 3 tries
# with 0.5s, 1.0s backoff; 401/403 never get retried - a bad key stays bad.
class RealDebridClient(PooledClientMixin):
    """HTTP client for the Real-Debrid torrent API."""

    def __init__(
        self,
        settings: RealDebridSettings,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        limiter: RateLimiter | None = None,
    ) -> None:
        """Initialize Real-Debrid client.

        Args:
            settings: Real-Debrid configuration
            client: Optional injected httpx client (shared pool used otherwise)
            sleep: Sleep function used for retry backoff
            limiter: Rate limiter (process-wide Real-Debrid limiter by default)
        """
        self.settings = settings
        self._http = client
        self._sleep = sleep
        self._limiter = limiter or get_debrid_limiter()
        self._base_url = settings.api_url.rstrip("/")

    async def _request(
        self, method: str, path: str, api_key: str, **kwargs: Any
    ) -> httpx.Response:
        """Make an authenticated request with retry on transport errors.

        Raises:
            InvalidCredentialsError: On 401/403
            SourceUnreachableError: On network errors after all retries, or 5xx
        """
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {api_key}"}
        url = f"{self._base_url}{path}"
        last_error: Exception | None = None

        for attempt in range(1, self.settings.max_retries + 1):
            try:
                async with self._limiter:
                    response = await client.request(
                        method,
                        url,
                        headers=headers,
                        timeout=self.settings.request_timeout,
                        **kwargs,
                    )
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    "Real-Debrid %s %s attempt %d/%d failed: %s",
                    method,
                    path,
                    attempt,
                    self.settings.max_retries,
                    e,
                )
                if attempt < self.settings.max_retries:
                    await self._sleep(self.settings.retry_backoff * attempt)
                continue

            if response.status_code == 429 and attempt < self.settings.max_retries:
                retry_after = response.headers.get("Retry-After")
                await self._limiter.handle_rate_limit_response(
                    float(retry_after) if retry_after and retry_after.isdigit() else None
                )
                continue
            if response.status_code in (401, 403):
                raise InvalidCredentialsError(SOURCE, f"API key rejected ({response.status_code})")
            if response.status_code >= 500:
                raise SourceUnreachableError(SOURCE, f"{path} returned {response.status_code}")
            return response

        raise SourceUnreachableError(SOURCE, f"{path} failed after retries: {last_error}")

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_error:
            raise ExternalServiceError(
                f"{SOURCE}: {action} failed: {response.status_code} {response.text[:120]}"
            )

    async def verify(self, api_key: str) -> DebridAccount:
        """Verify an API key.

        Returns:
            Account info

        Raises:
            InvalidCredentialsError: If the key is rejected
        """
        response = await self._request("GET", "/user", api_key)
        self._raise_for_status(response, "verify")
        data = response.json()
        return DebridAccount(
            username=data.get("username", ""),
            premium=(data.get("premium") or 0) > 0,
            expiration=data.get("expiration"),
        )

    async def add_magnet(self, api_key: str, magnet: str) -> str:
        """Add a magnet to the account.

        Returns:
            Real-Debrid torrent id
        """
        response = await self._request(
            "POST", "/torrents/addMagnet", api_key, data={"magnet": magnet}
        )
        self._raise_for_status(response, "addMagnet")
        torrent_id = str(response.json()["id"])
        logger.debug("Torrent added to Real-Debrid: %s", torrent_id)
        return torrent_id

    async def get_torrent_info(self, api_key: str, torrent_id: str) -> DebridTorrentInfo:
        """Get status, progress, audio files and links of a torrent."""
        response = await self._request("GET", f"/torrents/info/{torrent_id}", api_key)
        self._raise_for_status(response, "torrent info")
        data = response.json()
        return DebridTorrentInfo(
            torrent_id=str(data.get("id", torrent_id)),
            filename=data.get("filename") or "",
            status=data.get("status") or "magnet_conversion",
            progress=float(data.get("progress") or 0),
            files=_parse_files(data.get("files")),
            links=tuple(data.get("links") or ()),
        )

    async def select_files(self, api_key: str, torrent_id: str, file_ids: list[int]) -> None:
        """Select files of a torrent to start the download (204 on success)."""
        response = await self._request(
            "POST",
            f"/torrents/selectFiles/{torrent_id}",
            api_key,
            data={"files": ",".join(str(file_id) for file_id in file_ids)},
        )
        self._raise_for_status(response, "selectFiles")

    async def unrestrict_link(self, api_key: str, link: str) -> UnrestrictedLink:
        """Turn a hoster link into a direct download URL."""
        response = await self._request("POST", "/unrestrict/link", api_key, data={"link": link})
        self._raise_for_status(response, "unrestrict")
        data = response.json()
        return UnrestrictedLink(
            download=data["download"],
            filename=data.get("filename") or "",
            filesize=int(data.get("filesize") or 0),
            mime_type=data.get("mimeType"),
        )

    async def ping(self) -> bool:
        """Unauthenticated reachability check (server time endpoint)."""
        try:
            client = await self._get_client()
            response = await client.get(f"{self._base_url}/time", timeout=5.0)
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug("Real-Debrid ping failed: %s", e)
            return False
