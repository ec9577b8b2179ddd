"""Process-wide sync state broadcaster.

Hey future me - this is what the UI reads to paint the little sync badges. Every track is in
exactly ONE state: idle, syncing, downloading or synced. Adding a track to one state takes it
out of the others, so "syncing AND synced at the same time" can't happen.

Two writers feed it:
1. Local coordinators (optimistic: "I'm resolving this one now")
2. The mapping store change feed (ground truth: a row with a link exists)

The change feed always wins - if another process finished the track, we show synced even if
our own coordinator is still busy.

Subscribers are called synchronously on every actual change, no batching. Everything runs on
the event loop, so no locking is needed.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from itertools import count
from typing import ClassVar

from tracksync.domain.entities import (
    ChangeEventType,
    MappingChangeEvent,
    SyncState,
    TrackFileMapping,
    utc_now,
)
from tracksync.domain.ports import IChangeFeed, IMappingStore, Unsubscribe

logger = logging.getLogger(__name__)

StateCallback = Callable[[str, SyncState], None]


@dataclass(frozen=True)
class SyncSnapshot:
    """Frozen copy of the broadcaster's sets."""

    syncing: frozenset[str]
    downloading: frozenset[str]
    synced: frozenset[str]


def state_for_row(direct_link: str | None) -> SyncState:
    """Sync state implied by a mapping row: link -> synced, no link -> downloading."""
    return SyncState.SYNCED if direct_link is not None else SyncState.DOWNLOADING


class SyncStateBroadcaster:
    """Holds per-track sync state and notifies subscribers on change."""

    _instance: ClassVar["SyncStateBroadcaster | None"] = None

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize broadcaster.

        Args:
            clock: Time source for last_changed_at (tests inject a fake)
        """
        self._clock = clock
        self._states: dict[str, SyncState] = {}
        self._changed_at: dict[str, datetime] = {}
        self._subscribers: dict[int, StateCallback] = {}
        self._ids = count()

    @classmethod
    def get_instance(cls) -> "SyncStateBroadcaster":
        """Process-wide broadcaster."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the process-wide broadcaster (tests)."""
        cls._instance = None

    # ------------------------------------------------------------------ mutations

    def _set(self, track_id: str, state: SyncState) -> bool:
        current = self._states.get(track_id, SyncState.IDLE)
        if current == state:
            return False
        if state == SyncState.IDLE:
            self._states.pop(track_id, None)
        else:
            self._states[track_id] = state
        self._changed_at[track_id] = self._clock()
        logger.debug("Track %s: %s -> %s", track_id, current.value, state.value)
        self._notify(track_id, state)
        return True

    def add_syncing(self, track_id: str) -> None:
        """Mark a track as being resolved."""
        self._set(track_id, SyncState.SYNCING)

    def add_downloading(self, track_id: str) -> None:
        """Mark a track as waiting on a backend download."""
        self._set(track_id, SyncState.DOWNLOADING)

    def add_synced(self, track_id: str) -> None:
        """Mark a track as playable."""
        self._set(track_id, SyncState.SYNCED)

    def clear(self, track_id: str) -> None:
        """Return a track to idle."""
        self._set(track_id, SyncState.IDLE)

    # ------------------------------------------------------------------ queries

    def is_syncing(self, track_id: str) -> bool:
        """Track is being resolved."""
        return self._states.get(track_id) == SyncState.SYNCING

    def is_downloading(self, track_id: str) -> bool:
        """Track is waiting on a backend download."""
        return self._states.get(track_id) == SyncState.DOWNLOADING

    def is_synced(self, track_id: str) -> bool:
        """Track has a playable link."""
        return self._states.get(track_id) == SyncState.SYNCED

    def state_of(self, track_id: str) -> SyncState:
        """Current state of a track (idle when unknown)."""
        return self._states.get(track_id, SyncState.IDLE)

    def last_changed_at(self, track_id: str) -> datetime | None:
        """When the track's state last changed, or None if it never did."""
        return self._changed_at.get(track_id)

    def snapshot(self) -> SyncSnapshot:
        """Frozen copy of all three sets."""
        by_state: dict[SyncState, set[str]] = {
            SyncState.SYNCING: set(),
            SyncState.DOWNLOADING: set(),
            SyncState.SYNCED: set(),
        }
        for track_id, state in self._states.items():
            by_state[state].add(track_id)
        return SyncSnapshot(
            syncing=frozenset(by_state[SyncState.SYNCING]),
            downloading=frozenset(by_state[SyncState.DOWNLOADING]),
            synced=frozenset(by_state[SyncState.SYNCED]),
        )

    # ------------------------------------------------------------------ subscribers

    def subscribe(self, callback: StateCallback) -> Unsubscribe:
        """Register a callback(track_id, new_state).

        Returns:
            Function that removes the callback (safe to call twice)
        """
        token = next(self._ids)
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def _notify(self, track_id: str, state: SyncState) -> None:
        # Copy: a callback may unsubscribe itself while we iterate
        for callback in list(self._subscribers.values()):
            try:
                callback(track_id, state)
            except Exception:
                logger.exception("Sync state subscriber failed for track %s", track_id)

    def reset(self) -> None:
        """Drop all state and all subscribers."""
        self._states.clear()
        self._changed_at.clear()
        self._subscribers.clear()

    # ------------------------------------------------------------------ remote reconciliation

    def apply_change_event(self, event: MappingChangeEvent) -> None:
        """Apply a mapping store row change (remote truth beats local state)."""
        if event.event_type == ChangeEventType.DELETE:
            self.clear(event.track_id)
            return
        self._set(event.track_id, state_for_row(event.direct_link))

    def attach_change_feed(self, feed: IChangeFeed) -> Unsubscribe:
        """Follow a mapping store change feed.

        Returns:
            Function that detaches the feed
        """
        return feed.subscribe(self.apply_change_event)

    async def rehydrate(self, store: IMappingStore, track_ids: Sequence[str]) -> int:
        """Load state for tracks not yet known as synced, in one batch lookup.

        Args:
            store: Mapping store to read
            track_ids: Tracks currently on screen

        Returns:
            Number of tracks whose state changed
        """
        unknown = [track_id for track_id in dict.fromkeys(track_ids) if not self.is_synced(track_id)]
        if not unknown:
            return 0

        mappings: list[TrackFileMapping] = await store.get_many(unknown)
        changed = 0
        for mapping in mappings:
            if self._set(mapping.track_id, state_for_row(mapping.direct_link)):
                changed += 1
        logger.debug("Rehydrated %d/%d tracks", changed, len(unknown))
        return changed


__all__ = ["SyncSnapshot", "SyncStateBroadcaster", "state_for_row"]
