"""
Tests for client sessions syncing over a shared snapshot store.

These tests cover:
- Opening snapshot reaching every subscribed session
- Rejected moves writing nothing
- Pending wild plays completed by a color choice
- Lost write races and transport retries
- Color Clash auto-draw on turn expiry
- Flip 21 dealer turn driven by one client

Two sessions share one MemorySnapshotStore, which notifies subscribers
inline after each write.
"""

import asyncio
import random

import pytest

from cards import CardColor, ColorClashCard, ColorClashKind
from color_clash import ColorClashState, GameStatus, PlayerActionType
from errors import (
    ConcurrencyError,
    NOT_YOUR_TURN,
    STALE_SNAPSHOT,
    TRANSPORT_FAILURE,
    TransportFailure,
    WILD_COLOR_REQUIRED,
)
from flip21 import PlayerRoundStatus, RoundPhase
from stores.base import SnapshotUpdate, StoredSnapshot, snapshot_key
from stores.memory_store import MemorySnapshotStore
from sync import ColorClashSession, Flip21Session
from turn_timer import TimerKey
from turns import utcnow

ROOM = "ABCD"
CC_KEY = snapshot_key("color_clash", ROOM)


class FlakyStore(MemorySnapshotStore):
    """Memory store whose first writes fail at the transport level."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def compare_and_set(self, key, expected_version, document):
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise TransportFailure("connection reset")
        return await super().compare_and_set(key, expected_version, document)


class RacingStore(MemorySnapshotStore):
    """Memory store that lets another writer in right before the next write."""

    race = False

    async def compare_and_set(self, key, expected_version, document):
        if self.race:
            self.race = False
            current = await self.load(key)
            await super().compare_and_set(key, expected_version, current.document)
        return await super().compare_and_set(key, expected_version, document)


def num(color: CardColor, n: int) -> ColorClashCard:
    return ColorClashCard(ColorClashKind.NUMBER, color=color, number=n)


def crafted_state(
    alice_hand: list[ColorClashCard],
    bob_hand: list[ColorClashCard] = None,
    turn_duration: float = 30.0,
) -> ColorClashState:
    """Alice to play on a red 1, with a fresh turn clock."""
    top = num(CardColor.RED, 1)
    return ColorClashState(
        room_code=ROOM,
        player_order=["alice", "bob"],
        player_hands={
            "alice": alice_hand,
            "bob": bob_hand or [num(CardColor.GREEN, 2), num(CardColor.GREEN, 3)],
        },
        deck=[num(CardColor.YELLOW, n) for n in range(1, 10)],
        discard_pile=[top],
        current_player_index=0,
        current_color=CardColor.RED,
        status=GameStatus.PLAYING,
        turn_started_at=utcnow(),
        turn_duration=turn_duration,
        turn_generation=1,
    )


async def join(store, *player_ids, session_class=ColorClashSession, **kwargs):
    sessions = []
    for i, pid in enumerate(player_ids):
        session = session_class(
            store, ROOM, pid, rng=random.Random(i), retry_backoff=0, **kwargs
        )
        await session.start()
        sessions.append(session)
    return sessions


async def leave(*sessions):
    for session in sessions:
        await session.stop()


# =============================================================================
# Color Clash Sessions
# =============================================================================

class TestColorClashSync:

    @pytest.mark.asyncio
    async def test_start_game_reaches_all_sessions(self):
        store = MemorySnapshotStore()
        alice, bob = await join(store, "alice", "bob")

        result = await alice.start_game(["alice", "bob"])

        assert result.success
        assert alice.view.is_my_turn
        assert not bob.view.is_my_turn
        assert len(bob.view.my_hand) == 7
        assert bob.view.hand_counts == {"alice": 7, "bob": 7}
        assert alice.state.version == bob.state.version == 1
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_session_started_late_loads_current_game(self):
        store = MemorySnapshotStore()
        await store.create(CC_KEY, crafted_state([num(CardColor.RED, 5)]).to_dict())

        (bob,) = await join(store, "bob")

        assert bob.view.current_player_id == "alice"
        assert bob.view.hand_counts["alice"] == 1
        await leave(bob)

    @pytest.mark.asyncio
    async def test_play_card_syncs(self):
        store = MemorySnapshotStore()
        red5 = num(CardColor.RED, 5)
        await store.create(CC_KEY, crafted_state([red5, num(CardColor.BLUE, 7)]).to_dict())
        alice, bob = await join(store, "alice", "bob")

        result = await alice.play_card(red5.id)

        assert result.success
        assert bob.view.top_card.id == red5.id
        assert bob.view.is_my_turn
        assert bob.view.last_action_type == PlayerActionType.PLAYED
        assert (await store.load(CC_KEY)).version == 2
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_wrong_turn_writes_nothing(self):
        store = MemorySnapshotStore()
        green2 = num(CardColor.GREEN, 2)
        await store.create(
            CC_KEY, crafted_state([num(CardColor.RED, 5)], [green2, num(CardColor.RED, 9)]).to_dict()
        )
        alice, bob = await join(store, "alice", "bob")

        result = await bob.play_card(green2.id)

        assert not result.success
        assert result.code == NOT_YOUR_TURN
        assert bob.error_message == result.reason
        assert (await store.load(CC_KEY)).version == 1
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_wild_waits_for_color(self):
        store = MemorySnapshotStore()
        wild = ColorClashCard(ColorClashKind.WILD)
        await store.create(
            CC_KEY, crafted_state([wild, num(CardColor.BLUE, 7), num(CardColor.RED, 3)]).to_dict()
        )
        alice, bob = await join(store, "alice", "bob")

        result = await alice.play_card(wild.id)

        assert result.code == WILD_COLOR_REQUIRED
        assert alice.pending_wild.card_id == wild.id
        assert (await store.load(CC_KEY)).version == 1

        result = await alice.select_wild_color(CardColor.BLUE)

        assert result.success
        assert alice.pending_wild is None
        assert bob.view.current_color == CardColor.BLUE
        assert bob.view.is_my_turn
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_cancel_wild(self):
        store = MemorySnapshotStore()
        wild = ColorClashCard(ColorClashKind.WILD)
        await store.create(CC_KEY, crafted_state([wild, num(CardColor.RED, 3)]).to_dict())
        (alice,) = await join(store, "alice")

        await alice.play_card(wild.id)
        alice.cancel_wild()

        result = await alice.select_wild_color(CardColor.GREEN)
        assert not result.success
        assert len(alice.view.my_hand) == 2
        await leave(alice)

    @pytest.mark.asyncio
    async def test_pending_wild_dropped_when_turn_moves_on(self):
        store = MemorySnapshotStore()
        wild = ColorClashCard(ColorClashKind.WILD)
        await store.create(CC_KEY, crafted_state([wild, num(CardColor.RED, 3)]).to_dict())
        (alice,) = await join(store, "alice")
        await alice.play_card(wild.id)

        await alice._on_turn_expired(TimerKey(ROOM, "alice", 1))

        assert alice.pending_wild is None
        assert alice.view.current_player_id == "bob"
        await leave(alice)

    @pytest.mark.asyncio
    async def test_declare_last_card_syncs(self):
        store = MemorySnapshotStore()
        await store.create(
            CC_KEY, crafted_state([num(CardColor.BLUE, 4)], [num(CardColor.GREEN, 2)]).to_dict()
        )
        alice, bob = await join(store, "alice", "bob")

        result = await bob.declare_last_card()

        assert result.success
        assert alice.view.last_card_declared == {"bob": True}
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_lost_race_reports_stale_snapshot(self):
        store = RacingStore()
        red5 = num(CardColor.RED, 5)
        await store.create(CC_KEY, crafted_state([red5, num(CardColor.BLUE, 7)]).to_dict())
        (alice,) = await join(store, "alice")

        store.race = True
        result = await alice.play_card(red5.id)

        assert not result.success
        assert result.code == STALE_SNAPSHOT
        assert alice.error_message
        # Refreshed to the winning writer's snapshot
        assert alice.state.version == 2
        assert any(c.id == red5.id for c in alice.view.my_hand)
        await leave(alice)

    @pytest.mark.asyncio
    async def test_transport_failure_is_retried(self):
        store = FlakyStore(failures=2)
        red5 = num(CardColor.RED, 5)
        await store.create(CC_KEY, crafted_state([red5, num(CardColor.BLUE, 7)]).to_dict())
        (alice,) = await join(store, "alice")

        result = await alice.play_card(red5.id)

        assert result.success
        assert store.attempts == 3
        assert alice.error_message is None
        assert alice.state.version == 2
        await leave(alice)

    @pytest.mark.asyncio
    async def test_transport_failure_gives_up(self):
        store = FlakyStore(failures=10)
        red5 = num(CardColor.RED, 5)
        await store.create(CC_KEY, crafted_state([red5, num(CardColor.BLUE, 7)]).to_dict())
        (alice,) = await join(store, "alice", write_retries=2)

        result = await alice.play_card(red5.id)

        assert not result.success
        assert result.code == TRANSPORT_FAILURE
        assert store.attempts == 3
        assert alice.state.version == 1
        await leave(alice)

    @pytest.mark.asyncio
    async def test_expiry_auto_draws(self):
        store = MemorySnapshotStore()
        await store.create(
            CC_KEY, crafted_state([num(CardColor.BLUE, 7)], turn_duration=0.05).to_dict()
        )
        (alice,) = await join(store, "alice")

        await asyncio.sleep(0.3)

        assert len(alice.view.my_hand) == 2
        assert alice.view.current_player_id == "bob"
        assert alice.view.last_action_type == PlayerActionType.DREW
        assert alice.timers.active_key(ROOM) is None
        await leave(alice)

    @pytest.mark.asyncio
    async def test_stale_expiry_writes_nothing(self):
        store = MemorySnapshotStore()
        await store.create(CC_KEY, crafted_state([num(CardColor.BLUE, 7)]).to_dict())
        (alice,) = await join(store, "alice")

        await alice._on_turn_expired(TimerKey(ROOM, "alice", 0))

        assert (await store.load(CC_KEY)).version == 1
        await leave(alice)

    @pytest.mark.asyncio
    async def test_timer_only_runs_for_own_turn(self):
        store = MemorySnapshotStore()
        await store.create(CC_KEY, crafted_state([num(CardColor.BLUE, 7)]).to_dict())
        alice, bob = await join(store, "alice", "bob")

        assert alice.timers.active_key(ROOM) == TimerKey(ROOM, "alice", 1)
        assert bob.timers.active_key(ROOM) is None
        assert 0 < alice.remaining_seconds() <= 30
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_clock_stops_when_game_is_won(self):
        store = MemorySnapshotStore()
        red5 = num(CardColor.RED, 5)
        await store.create(CC_KEY, crafted_state([red5]).to_dict())
        alice, bob = await join(store, "alice", "bob")

        result = await alice.play_card(red5.id)

        assert result.success
        assert bob.view.is_finished
        assert alice.remaining_seconds() == 0
        assert alice.view.remaining_seconds == 0
        assert bob.view.remaining_seconds == 0
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_older_snapshot_ignored(self):
        store = MemorySnapshotStore()
        red5 = num(CardColor.RED, 5)
        opening = await store.create(CC_KEY, crafted_state([red5, num(CardColor.RED, 3)]).to_dict())
        (alice,) = await join(store, "alice")
        await alice.play_card(red5.id)

        applied = await alice._apply_snapshot(opening)

        assert not applied
        assert alice.state.version == 2
        await leave(alice)

    @pytest.mark.asyncio
    async def test_subscription_error_reported(self):
        store = MemorySnapshotStore()
        await store.create(CC_KEY, crafted_state([num(CardColor.BLUE, 7)]).to_dict())
        (alice,) = await join(store, "alice")

        await alice._on_update(SnapshotUpdate(CC_KEY, error=TransportFailure("Subscription lost")))

        assert "Subscription lost" in alice.error_message
        assert alice.state.version == 1
        await leave(alice)

    @pytest.mark.asyncio
    async def test_stop_unsubscribes_and_cancels_timer(self):
        store = MemorySnapshotStore()
        await store.create(CC_KEY, crafted_state([num(CardColor.BLUE, 7)]).to_dict())
        (alice,) = await join(store, "alice")
        assert store.subscriber_count(CC_KEY) == 1

        await alice.stop()

        assert store.subscriber_count(CC_KEY) == 0
        assert alice.timers.active_key(ROOM) is None

    @pytest.mark.asyncio
    async def test_action_without_game(self):
        store = MemorySnapshotStore()
        (alice,) = await join(store, "alice")

        result = await alice.draw_card()

        assert not result.success
        assert alice.view is None
        await leave(alice)


# =============================================================================
# Flip 21 Sessions
# =============================================================================

class TestFlip21Sync:

    @pytest.mark.asyncio
    async def test_round_plays_through_dealer(self):
        store = MemorySnapshotStore()
        alice, bob = await join(store, "alice", "bob", session_class=Flip21Session, dealer_delay=0)
        await alice.start_game(["alice", "bob"])

        assert (await alice.lock()).success
        assert bob.view.is_my_turn
        assert (await bob.lock()).success
        assert bob.state.dealer_driver_id == "bob"

        await bob.wait_for_dealer()

        assert alice.view.phase == RoundPhase.FINISHED
        assert set(alice.view.round_results) == {"alice", "bob"}
        assert alice.view.dealer_value >= 17 or len(alice.state.deck) == 0
        assert alice.state.version == bob.state.version
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_only_driver_runs_dealer(self):
        store = MemorySnapshotStore()
        alice, bob = await join(store, "alice", "bob", session_class=Flip21Session, dealer_delay=0)
        await alice.start_game(["alice", "bob"])
        await alice.lock()
        await bob.lock()
        await bob.wait_for_dealer()

        assert alice._dealer_task is None
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_hit_syncs(self):
        store = MemorySnapshotStore()
        alice, bob = await join(store, "alice", "bob", session_class=Flip21Session, dealer_delay=0)
        await alice.start_game(["alice", "bob"])

        result = await alice.hit()

        assert result.success
        assert len(bob.state.hand("alice")) == 2
        assert bob.state.status_of("alice") in (PlayerRoundStatus.ACTIVE, PlayerRoundStatus.BUSTED)
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_wrong_turn_rejected(self):
        store = MemorySnapshotStore()
        alice, bob = await join(store, "alice", "bob", session_class=Flip21Session, dealer_delay=0)
        await alice.start_game(["alice", "bob"])

        result = await bob.lock()

        assert result.code == NOT_YOUR_TURN
        assert (await store.load(snapshot_key("flip21", ROOM))).version == 1
        await leave(alice, bob)

    @pytest.mark.asyncio
    async def test_turn_expiry_only_flags(self):
        store = MemorySnapshotStore()
        (alice,) = await join(store, "alice", session_class=Flip21Session, dealer_delay=0)
        await alice.start_game(["alice", "bob"], turn_duration=0.05)

        await asyncio.sleep(0.2)

        assert alice.turn_time_up
        assert alice.view.is_my_turn
        assert alice.state.version == 1
        await leave(alice)

    @pytest.mark.asyncio
    async def test_stop_cancels_dealer(self):
        store = MemorySnapshotStore()
        alice, bob = await join(store, "alice", "bob", session_class=Flip21Session, dealer_delay=10)
        await alice.start_game(["alice", "bob"])
        await alice.lock()
        await bob.lock()

        await bob.stop()

        assert bob._dealer_task is None
        assert bob.state.phase == RoundPhase.DEALER_TURN
        await leave(alice)


class TestStoredSnapshotAdoption:

    @pytest.mark.asyncio
    async def test_document_version_wins(self):
        store = MemorySnapshotStore()
        (alice,) = await join(store, "alice")
        state = crafted_state([num(CardColor.BLUE, 7)])

        await alice._apply_snapshot(StoredSnapshot(CC_KEY, 5, state.to_dict()))

        assert alice.state.version == 5
        await leave(alice)

    @pytest.mark.asyncio
    async def test_concurrency_error_is_transport_failure(self):
        assert issubclass(ConcurrencyError, TransportFailure)
