"""In-process realtime change feed for mapping rows."""

import logging
from collections.abc import Callable

from tracksync.domain.entities import MappingChangeEvent
from tracksync.domain.ports import IChangeFeed, Unsubscribe

logger = logging.getLogger(__name__)


class InProcessChangeFeed(IChangeFeed):
    """Synchronous pub/sub for MappingChangeEvent.

    The store publishes after each committed write. Delivery is synchronous and in
    subscription order. Another process would plug in its own IChangeFeed (database
    NOTIFY, websocket) and feed the same events to the broadcaster.
    """

    def __init__(self) -> None:
        self._subscribers: list[Callable[[MappingChangeEvent], None]] = []

    def publish(self, event: MappingChangeEvent) -> None:
        """Deliver an event to every subscriber.

        A failing subscriber is logged and skipped; the rest still get the event.
        """
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Change feed subscriber failed for %s %s",
                    event.event_type.value,
                    event.track_id,
                )

    def subscribe(self, callback: Callable[[MappingChangeEvent], None]) -> Unsubscribe:
        """Register a callback.

        Returns:
            Function that removes the callback (safe to call twice)
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        """Number of active subscribers."""
        return len(self._subscribers)
