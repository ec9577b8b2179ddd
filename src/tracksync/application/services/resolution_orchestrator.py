"""Resolution orchestrator: walk the source chain until one backend delivers.

Hey future me - this is the "try source A, then B, then C" logic, kept in ONE place so the
coordinator and album sync never deal with individual backends. Rules:

- Sources are tried in SourceConfig order, one at a time.
- First ACCEPTABLE ready candidate wins, right away. We don't collect everything and pick
  the best - a user waiting on a track cares about latency, not the last 2% of quality.
- A pending candidate (debrid still downloading) is returned at once, unless the config
  allows parallel pending, in which case we remember it and keep looking for something
  playable now.
- An adapter that blows up NEVER aborts the loop. It's logged and counted as a failed source.
- When nothing worked the caller gets a ResolutionFailure, not an exception.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from tracksync.domain.entities import (
    CandidateStatus,
    FailureReason,
    ResolutionFailure,
    StreamCandidate,
    Track,
)
from tracksync.domain.exceptions import InvalidCredentialsError, SourceUnreachableError
from tracksync.domain.value_objects import SourceConfig, title_matches

if TYPE_CHECKING:
    from tracksync.infrastructure.providers.registry import SourceRegistry

logger = logging.getLogger(__name__)


@dataclass
class _ChainOutcome:
    """Bookkeeping for one walk over the source chain."""

    attempted: list[str] = field(default_factory=list)
    errored: set[str] = field(default_factory=set)
    credential_errors: list[str] = field(default_factory=list)
    pending: StreamCandidate | None = None

    def failure(self, track: Track) -> ResolutionFailure:
        """Pick the failure reason once the chain is exhausted."""
        attempted = tuple(self.attempted)
        if self.credential_errors:
            return ResolutionFailure(
                reason=FailureReason.INVALID_CREDENTIALS,
                message=f"API key missing or rejected by {', '.join(self.credential_errors)}",
                attempted_sources=attempted,
            )
        if attempted and len(self.errored) == len(attempted):
            return ResolutionFailure(
                reason=FailureReason.ALL_SOURCES_FAILED,
                message=f"All sources failed for '{track.title}'",
                attempted_sources=attempted,
            )
        return ResolutionFailure(
            reason=FailureReason.NOT_FOUND,
            message=f"No acceptable stream found for '{track.title}' by {track.artist}",
            attempted_sources=attempted,
        )


def is_acceptable(candidate: StreamCandidate, track: Track) -> bool:
    """Ready candidate whose matched text (when known) passes the title matcher."""
    if not candidate.is_ready:
        return False
    if candidate.matched_text is None:
        return True
    return title_matches(candidate.matched_text, track.title)


class ResolutionOrchestrator:
    """Resolves a track to a stream candidate over the configured source chain."""

    def __init__(self, registry: "SourceRegistry") -> None:
        """Initialize orchestrator.

        Args:
            registry: Registry holding the source adapters
        """
        self._registry = registry

    async def resolve(
        self, track: Track, config: SourceConfig
    ) -> StreamCandidate | ResolutionFailure:
        """Resolve a track.

        Args:
            track: Track to resolve
            config: Source order, parallel-pending flag and quality

        Returns:
            The first acceptable candidate (ready, or pending), or a typed failure
        """
        outcome = _ChainOutcome()

        for source_name in config.sources:
            outcome.attempted.append(source_name)
            adapter = self._registry.get(source_name)
            if adapter is None:
                logger.warning("Source '%s' is not registered, skipping", source_name)
                outcome.errored.add(source_name)
                continue

            try:
                candidates = await adapter.search(track, config.quality)
            except InvalidCredentialsError as e:
                logger.warning("%s: %s", source_name, e.message)
                outcome.errored.add(source_name)
                outcome.credential_errors.append(source_name)
                continue
            except SourceUnreachableError as e:
                logger.warning("%s unreachable for '%s': %s", source_name, track.title, e.message)
                outcome.errored.add(source_name)
                continue
            except Exception as e:
                logger.exception("%s failed for '%s': %s", source_name, track.title, e)
                outcome.errored.add(source_name)
                continue

            for candidate in candidates:
                if candidate.status.is_pending:
                    if not config.allow_parallel_pending:
                        logger.info(
                            "'%s' pending on %s (%s)",
                            track.title,
                            source_name,
                            candidate.status.value,
                        )
                        return candidate
                    if outcome.pending is None:
                        outcome.pending = candidate
                    continue
                if is_acceptable(candidate, track):
                    logger.info("'%s' resolved via %s", track.title, source_name)
                    return candidate
                if candidate.status == CandidateStatus.READY:
                    logger.info(
                        "%s: '%s' did not match '%s'",
                        source_name,
                        candidate.matched_text,
                        track.title,
                    )

            logger.debug("%s: no match for '%s'", source_name, track.title)

        if outcome.pending is not None:
            logger.info(
                "'%s': no ready stream, falling back to pending job on %s",
                track.title,
                outcome.pending.source_name,
            )
            return outcome.pending

        failure = outcome.failure(track)
        logger.info("'%s' unresolved: %s", track.title, failure.reason.value)
        return failure

    async def poll(self, candidate: StreamCandidate) -> StreamCandidate:
        """Ask the owning adapter about a pending candidate.

        Returns:
            Fresh candidate; ERROR when the adapter or the job handle is gone
        """
        adapter = self._registry.get(candidate.source_name)
        if adapter is None or candidate.job is None:
            logger.warning("Cannot poll candidate from %s", candidate.source_name)
            return StreamCandidate(source_name=candidate.source_name, status=CandidateStatus.ERROR)
        return await adapter.poll(candidate.job)


__all__ = ["ResolutionOrchestrator", "is_acceptable"]
