"""Observability: logging setup and source health tracking."""

from tracksync.infrastructure.observability.health import BreakerState, CircuitBreaker
from tracksync.infrastructure.observability.logging import (
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)

__all__ = [
    "BreakerState",
    "CircuitBreaker",
    "configure_logging",
    "get_correlation_id",
    "set_correlation_id",
]
