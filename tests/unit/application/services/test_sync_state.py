"""Tests for SyncStateBroadcaster."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from tracksync.application.services.sync_state import SyncStateBroadcaster, state_for_row
from tracksync.domain.entities import (
    ChangeEventType,
    MappingChangeEvent,
    SyncState,
    TrackFileMapping,
)
from tracksync.infrastructure.persistence import InProcessChangeFeed


class StepClock:
    """Wall clock that advances one second per reading."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class TestStates:
    """Test the one-state-per-track rule."""

    def test_states_are_exclusive(self, broadcaster: SyncStateBroadcaster) -> None:
        """Each add moves the track out of the other sets."""
        broadcaster.add_syncing("t1")
        assert broadcaster.is_syncing("t1")

        broadcaster.add_downloading("t1")
        assert not broadcaster.is_syncing("t1")
        assert broadcaster.is_downloading("t1")

        broadcaster.add_synced("t1")
        snapshot = broadcaster.snapshot()
        assert snapshot.synced == frozenset({"t1"})
        assert snapshot.syncing == frozenset()
        assert snapshot.downloading == frozenset()

    def test_clear_returns_to_idle(self, broadcaster: SyncStateBroadcaster) -> None:
        """Cleared tracks are in no set."""
        broadcaster.add_syncing("t1")
        broadcaster.clear("t1")

        assert broadcaster.state_of("t1") == SyncState.IDLE
        assert broadcaster.snapshot().syncing == frozenset()

    def test_last_changed_at(self) -> None:
        """Only real changes move the timestamp."""
        clock = StepClock()
        broadcaster = SyncStateBroadcaster(clock=clock)
        assert broadcaster.last_changed_at("t1") is None

        broadcaster.add_syncing("t1")
        first = broadcaster.last_changed_at("t1")
        broadcaster.add_syncing("t1")

        assert broadcaster.last_changed_at("t1") == first
        broadcaster.add_synced("t1")
        assert broadcaster.last_changed_at("t1") == first + timedelta(seconds=1)  # type: ignore[operator]

    def test_state_for_row(self) -> None:
        """A link means synced, no link means downloading."""
        assert state_for_row("https://cdn.example/a.flac") == SyncState.SYNCED
        assert state_for_row(None) == SyncState.DOWNLOADING


class TestSubscribers:
    """Test change notifications."""

    def test_notified_only_on_change(self, broadcaster: SyncStateBroadcaster) -> None:
        """Repeating the current state is silent."""
        seen: list[tuple[str, SyncState]] = []
        broadcaster.subscribe(lambda track_id, state: seen.append((track_id, state)))

        broadcaster.add_syncing("t1")
        broadcaster.add_syncing("t1")
        broadcaster.clear("t1")
        broadcaster.clear("t1")

        assert seen == [("t1", SyncState.SYNCING), ("t1", SyncState.IDLE)]

    def test_unsubscribe_idempotent(self, broadcaster: SyncStateBroadcaster) -> None:
        """Calling unsubscribe twice is harmless."""
        seen: list[str] = []
        unsubscribe = broadcaster.subscribe(lambda track_id, _state: seen.append(track_id))

        unsubscribe()
        unsubscribe()
        broadcaster.add_synced("t1")

        assert seen == []

    def test_failing_subscriber_isolated(self, broadcaster: SyncStateBroadcaster) -> None:
        """A broken subscriber neither blocks others nor the state change."""
        seen: list[str] = []

        def broken(_track_id: str, _state: SyncState) -> None:
            raise RuntimeError("ui went away")

        broadcaster.subscribe(broken)
        broadcaster.subscribe(lambda track_id, _state: seen.append(track_id))

        broadcaster.add_synced("t1")

        assert seen == ["t1"]
        assert broadcaster.is_synced("t1")

    def test_reset(self, broadcaster: SyncStateBroadcaster) -> None:
        """reset() drops states and subscribers."""
        seen: list[str] = []
        broadcaster.subscribe(lambda track_id, _state: seen.append(track_id))
        broadcaster.add_synced("t1")

        broadcaster.reset()
        broadcaster.add_synced("t2")

        assert seen == ["t1"]
        assert broadcaster.snapshot().synced == frozenset({"t2"})


class TestSingleton:
    """Test the process-wide instance."""

    def test_get_instance_shared(self) -> None:
        """Same object until reset."""
        first = SyncStateBroadcaster.get_instance()
        assert SyncStateBroadcaster.get_instance() is first

        SyncStateBroadcaster.reset_instance()
        assert SyncStateBroadcaster.get_instance() is not first


class TestRemoteReconciliation:
    """Test change feed and rehydration."""

    def test_change_feed_overrides_local(self, broadcaster: SyncStateBroadcaster) -> None:
        """A remote row with a link beats a local 'syncing'."""
        feed = InProcessChangeFeed()
        detach = broadcaster.attach_change_feed(feed)
        broadcaster.add_syncing("t1")

        feed.publish(
            MappingChangeEvent(
                event_type=ChangeEventType.INSERT,
                track_id="t1",
                direct_link="https://cdn.example/a.flac",
            )
        )
        assert broadcaster.is_synced("t1")

        feed.publish(MappingChangeEvent(event_type=ChangeEventType.INSERT, track_id="t2"))
        assert broadcaster.is_downloading("t2")

        feed.publish(MappingChangeEvent(event_type=ChangeEventType.DELETE, track_id="t1"))
        assert broadcaster.state_of("t1") == SyncState.IDLE

        detach()
        assert feed.subscriber_count == 0

    async def test_rehydrate_batches_unknown_tracks(
        self, broadcaster: SyncStateBroadcaster
    ) -> None:
        """Already-synced tracks are skipped, the rest are read in one call."""
        broadcaster.add_synced("t1")
        store = AsyncMock()
        store.get_many.return_value = [
            TrackFileMapping(track_id="t2", direct_link="https://cdn.example/b.flac"),
            TrackFileMapping(track_id="t3"),
        ]

        changed = await broadcaster.rehydrate(store, ["t1", "t2", "t3", "t4", "t2"])

        store.get_many.assert_awaited_once_with(["t2", "t3", "t4"])
        assert changed == 2
        assert broadcaster.is_synced("t2")
        assert broadcaster.is_downloading("t3")
        assert broadcaster.state_of("t4") == SyncState.IDLE

    async def test_rehydrate_nothing_unknown(self, broadcaster: SyncStateBroadcaster) -> None:
        """No lookup when every track is already synced."""
        broadcaster.add_synced("t1")
        store = AsyncMock()

        assert await broadcaster.rehydrate(store, ["t1"]) == 0
        store.get_many.assert_not_awaited()
