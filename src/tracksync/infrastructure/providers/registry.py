"""Source adapter registry.

Holds every configured adapter keyed by source id, so the orchestrator can walk a
SourceConfig chain by name.
"""

import asyncio
import logging

from tracksync.domain.ports import ISourceAdapter

logger = logging.getLogger(__name__)


class SourceRegistry:
    """Registry of source adapters.

    Adapters are registered at startup (see bootstrap) and looked up per resolution.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._adapters: dict[str, ISourceAdapter] = {}

    def register(self, adapter: ISourceAdapter) -> None:
        """Register an adapter under its source_name (replaces an existing one).

        Args:
            adapter: Adapter implementation to register
        """
        self._adapters[adapter.source_name] = adapter
        logger.info("Registered source adapter: %s", adapter.source_name)

    def unregister(self, source_name: str) -> None:
        """Remove an adapter; unknown ids are ignored."""
        if self._adapters.pop(source_name, None) is not None:
            logger.info("Unregistered source adapter: %s", source_name)

    def get(self, source_name: str) -> ISourceAdapter | None:
        """Get an adapter by source id."""
        return self._adapters.get(source_name)

    def get_all(self) -> list[ISourceAdapter]:
        """All registered adapters, in registration order."""
        return list(self._adapters.values())

    async def get_available(self) -> list[ISourceAdapter]:
        """Adapters whose is_available() check passes.

        Checks run concurrently; a check that raises counts as unavailable.
        """
        adapters = self.get_all()
        results = await asyncio.gather(
            *(adapter.is_available() for adapter in adapters), return_exceptions=True
        )

        available: list[ISourceAdapter] = []
        for adapter, result in zip(adapters, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Error checking %s availability: %s", adapter.source_name, result)
            elif result:
                available.append(adapter)
            else:
                logger.debug("Source %s is not available", adapter.source_name)
        return available

    def __contains__(self, source_name: object) -> bool:
        return source_name in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


__all__ = ["SourceRegistry"]
