"""Token bucket rate limiting for the debrid and Deezer APIs.

Hey future me - one album sync adds up to eight torrents, asks for the info of each and then
selects and unrestricts files, all inside a few seconds. Real-Debrid allows roughly 250
requests a minute and Deezer 50 per 5 seconds, so every request borrows a token first:

    async with get_debrid_limiter():
        response = await client.get(url)

A 429 drains the bucket and backs off (doubling up to a cap); the next request that gets
through resets the backoff.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimiterConfig:
    """Bucket size, refill speed and 429 backoff curve."""

    max_tokens: int = 10
    refill_rate: float = 2.0  # tokens per second
    max_backoff_seconds: float = 60.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


class RateLimiter:
    """Token bucket with exponential backoff on rate limit responses."""

    def __init__(
        self,
        config: RateLimiterConfig | None = None,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or RateLimiterConfig()
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(self.config.max_tokens)
        self._stamp = clock()
        self._current_backoff = self.config.initial_backoff_seconds
        self._lock: asyncio.Lock | None = None

    @classmethod
    def for_deezer(cls) -> "RateLimiter":
        """Half of Deezer's 50 per 5 seconds, small bursts allowed."""
        return cls(
            RateLimiterConfig(
                max_tokens=15, refill_rate=5.0, max_backoff_seconds=30.0, initial_backoff_seconds=0.5
            ),
            name="deezer",
        )

    @classmethod
    def for_debrid(cls) -> "RateLimiter":
        """Just under Real-Debrid's 250 per minute with room for an album's burst."""
        return cls(RateLimiterConfig(max_tokens=20, refill_rate=3.5), name="real-debrid")

    def _refill(self) -> None:
        now = self._clock()
        gained = (now - self._stamp) * self.config.refill_rate
        self._tokens = min(float(self.config.max_tokens), self._tokens + gained)
        self._stamp = now

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self) -> None:
        """Take one token, sleeping until the bucket has one."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            self._refill()
            while self._tokens < 1.0:
                deficit = (1.0 - self._tokens) / self.config.refill_rate
                logger.debug("%s limiter empty, waiting %.2fs", self.name, deficit)
                await self._sleep(deficit)
                self._refill()
            self._tokens -= 1.0

    async def handle_rate_limit_response(self, retry_after: float | None = None) -> float:
        """Drain the bucket and wait after a 429.

        Args:
            retry_after: Seconds from the Retry-After header; the current backoff when absent

        Returns:
            Seconds waited
        """
        requested = self._current_backoff if retry_after is None else retry_after
        wait = min(requested, self.config.max_backoff_seconds)
        logger.warning("%s rate limited, backing off %.1fs", self.name, wait)

        self._tokens = 0.0
        self._current_backoff = min(
            self._current_backoff * self.config.backoff_multiplier,
            self.config.max_backoff_seconds,
        )
        await self._sleep(wait)
        return wait

    def reset_backoff(self) -> None:
        self._current_backoff = self.config.initial_backoff_seconds

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.reset_backoff()


_limiters: dict[str, RateLimiter] = {}


def _shared(name: str, factory: Callable[[], RateLimiter]) -> RateLimiter:
    limiter = _limiters.get(name)
    if limiter is None:
        limiter = _limiters[name] = factory()
    return limiter


def get_deezer_limiter() -> RateLimiter:
    """Process-wide Deezer limiter."""
    return _shared("deezer", RateLimiter.for_deezer)


def get_debrid_limiter() -> RateLimiter:
    """Process-wide Real-Debrid limiter."""
    return _shared("real-debrid", RateLimiter.for_debrid)


__all__ = [
    "RateLimiter",
    "RateLimiterConfig",
    "get_debrid_limiter",
    "get_deezer_limiter",
]
