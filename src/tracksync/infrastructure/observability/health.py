"""Health checks for the sync runtime and per-mirror circuit breaking."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

if TYPE_CHECKING:
    from tracksync.infrastructure.persistence.database import Database
    from tracksync.infrastructure.providers.registry import SourceRegistry

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health check status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheck:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str | None = None
    details: dict[str, Any] | None = None


class BreakerState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# Hey future me, the mirror racer keeps one breaker per mirror base URL. A mirror that failed
# failure_threshold times in a row sits out for timeout_seconds instead of burning a full request
# timeout on every search. After the timeout the breaker goes half-open: the next request is a
# probe, success closes it, failure opens it again right away.
class CircuitBreaker:
    """Consecutive-failure circuit breaker."""

    def __init__(
        self,
        failure_threshold: int = 3,
        timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "",
    ) -> None:
        """Initialize breaker.

        Args:
            failure_threshold: Consecutive failures that open the circuit
            timeout_seconds: How long an open circuit rejects attempts
            clock: Monotonic time source (tests pass a fake)
            name: Label for log lines, usually the mirror URL
        """
        self.failure_threshold = failure_threshold
        self.timeout_seconds = timeout_seconds
        self.name = name
        self._clock = clock
        self.failures = 0
        self.state = BreakerState.CLOSED
        self._opened_at = 0.0

    @property
    def is_open(self) -> bool:
        """Attempts are currently rejected."""
        return self.state == BreakerState.OPEN

    def _open(self) -> None:
        self.state = BreakerState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            "Circuit %s opened after %d consecutive failures", self.name or "?", self.failures
        )

    def record_success(self) -> None:
        """A call succeeded: close the circuit."""
        if self.state != BreakerState.CLOSED:
            logger.info("Circuit %s closed again", self.name or "?")
        self.state = BreakerState.CLOSED
        self.failures = 0

    def record_failure(self) -> None:
        """A call failed: count it, open the circuit at the threshold or on a failed probe."""
        self.failures += 1
        if self.state == BreakerState.HALF_OPEN or (
            self.state == BreakerState.CLOSED and self.failures >= self.failure_threshold
        ):
            self._open()

    def can_attempt(self) -> bool:
        """True when closed, or when an open circuit's timeout has passed (half-open probe)."""
        if self.state != BreakerState.OPEN:
            return True
        if self._clock() - self._opened_at > self.timeout_seconds:
            self.state = BreakerState.HALF_OPEN
            logger.debug("Circuit %s half-open, allowing a probe", self.name or "?")
            return True
        return False


async def check_database_health(db: "Database") -> HealthCheck:
    """Run SELECT 1 against the mapping store database.

    Never raises; a broken connection is reported as UNHEALTHY.
    """
    try:
        async with db.session_scope() as session:
            await session.scalar(text("SELECT 1"))
    except Exception as e:
        logger.exception("Database health check failed")
        return HealthCheck(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message=f"Database connection failed: {e}",
        )
    return HealthCheck(name="database", status=HealthStatus.HEALTHY, message="Database reachable")


async def check_sources_health(registry: "SourceRegistry") -> HealthCheck:
    """Report which stream sources answer their availability check.

    Returns:
        HEALTHY when every source answers, DEGRADED when some do, UNHEALTHY when none do
        (or none are registered)
    """
    registered = [adapter.source_name for adapter in registry.get_all()]
    available = [adapter.source_name for adapter in await registry.get_available()]
    unavailable = [name for name in registered if name not in available]

    if not available:
        status = HealthStatus.UNHEALTHY
    elif unavailable:
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.HEALTHY

    return HealthCheck(
        name="sources",
        status=status,
        message=f"{len(available)}/{len(registered)} sources available",
        details={"available": available, "unavailable": unavailable},
    )
