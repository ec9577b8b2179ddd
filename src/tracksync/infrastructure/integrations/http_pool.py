"""One httpx.AsyncClient shared by every integration that wasn't handed its own.

Hey future me - an album sync talks to the torrent index, the debrid API and (for fallback
tracks) a handful of Tidal mirrors, often all at once. Giving each its own client would mean
cold TCP + TLS for every host on every sync. The pool keeps one client alive for the process,
and SyncRuntime.aclose() shuts it down.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import ClassVar

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolLimits:
    """Connection limits of the shared client."""

    timeout: float = 30.0
    max_keepalive: int = 20
    # One mirror race is six parallel requests; several syncs may race at once
    max_connections: int = 60

    def build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(
                max_keepalive_connections=self.max_keepalive,
                max_connections=self.max_connections,
            ),
            http2=True,
            follow_redirects=True,
        )


class HttpClientPool:
    """Process-wide holder of the shared client."""

    limits: ClassVar[PoolLimits] = PoolLimits()
    _client: ClassVar[httpx.AsyncClient | None] = None
    _lock: ClassVar[asyncio.Lock | None] = None

    @classmethod
    def _guard(cls) -> asyncio.Lock:
        # asyncio.Lock must be created inside the loop that uses it
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        """Shared client, created on first use with the current limits."""
        if cls._client is not None and not cls._client.is_closed:
            return cls._client
        async with cls._guard():
            if cls._client is None or cls._client.is_closed:
                cls._client = cls.limits.build_client()
                logger.info("Opened shared HTTP client (%s)", cls.limits)
            return cls._client

    @classmethod
    async def close(cls) -> None:
        """Close the shared client; the next get_client() opens a fresh one."""
        async with cls._guard():
            client, cls._client = cls._client, None
        if client is not None and not client.is_closed:
            await client.aclose()
            logger.info("Closed shared HTTP client")

    @classmethod
    def reset(cls) -> None:
        """Drop client and lock without awaiting anything (tests get a new loop each time)."""
        cls._client = None
        cls._lock = None


class PooledClientMixin:
    """Integrations inherit this: an injected `_http` wins over the shared client."""

    _http: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        return self._http if self._http is not None else await HttpClientPool.get_client()
