"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing
    # str(exception). Don't raise this base class directly - always pick a specific subclass so
    # the orchestrator and coordinator can tell failure kinds apart.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ValidationError(DomainException):
    """A domain value was constructed with invalid data.

    Example:
        raise ValidationError("StreamCandidate with status ready needs a stream_url")
    """

    pass


class ConfigurationError(DomainException):
    """Required configuration is missing or invalid.

    Example:
        raise ConfigurationError("fallback_chain must name at least one source")
    """

    pass


class ExternalServiceError(DomainException):
    """A backend answered, but with an error for this specific request.

    Example:
        raise ExternalServiceError("real-debrid: addMagnet failed: 400 invalid magnet")
    """

    pass


class SourceUnreachableError(DomainException):
    """A backend (or every one of its mirrors) could not be reached.

    Covers network errors, timeouts and 5xx answers. The orchestrator counts the source as
    failed and moves on to the next one in the chain.
    """

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class InvalidCredentialsError(DomainException):
    """The backend rejected (or never got) the user's API key.

    Surfaces to the caller as FailureReason.INVALID_CREDENTIALS so the UI can ask the user
    to fix their key instead of showing a generic "not found".
    """

    def __init__(self, source: str, message: str = "API key missing or rejected") -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class NoMatchError(DomainException):
    """Candidates came back but none passed the title matcher."""

    def __init__(self, source: str, query: str) -> None:
        super().__init__(f"{source}: no candidate matched '{query}'")
        self.source = source
        self.query = query


class JobTimeoutError(DomainException):
    """A pending backend job stalled or ran past the polling ceiling."""

    def __init__(self, track_id: str, reason: str) -> None:
        super().__init__(f"Job for track {track_id} timed out: {reason}")
        self.track_id = track_id
        self.reason = reason


class StoreWriteError(DomainException):
    """Writing to the mapping store failed.

    The coordinator treats this as all-or-nothing: no 'synced' state is published when the
    write did not land.
    """

    pass


__all__ = [
    "ConfigurationError",
    "DomainException",
    "ExternalServiceError",
    "InvalidCredentialsError",
    "JobTimeoutError",
    "NoMatchError",
    "SourceUnreachableError",
    "StoreWriteError",
    "ValidationError",
]
