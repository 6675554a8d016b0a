"""
Client sessions that keep a player's view in sync with the shared snapshot.

There is no authoritative server: each client reads the latest snapshot,
computes the next one with a pure transition, and commits it with a
compare-and-set on the version it read. Every client subscribes to the
room's snapshot and rebuilds its view in full from each newer snapshot.

Action outcomes:
    - GameError: the move was not legal, nothing is written
    - ConcurrencyError: another client wrote first; the view is refreshed
      and the failure is reported immediately
    - TransportFailure: the store could not be reached; the action is
      retried a few times with a linear backoff, then reported

Usage:
    session = ColorClashSession(store, room_code="ABCD", my_id="alice")
    await session.start()
    await session.start_game(["alice", "bob"])   # host only
    result = await session.play_card(card_id)
    if not result.success:
        show(result.reason)
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional

import color_clash
import flip21
from cards import CardColor
from color_clash import ColorClashState, GameStatus, PendingWildPlay
from config import config
from constants import DEALER_DRAW_DELAY
from errors import (
    ConcurrencyError,
    GameError,
    InvalidAction,
    TransportFailure,
    STALE_SNAPSHOT,
    WILD_COLOR_REQUIRED,
)
from flip21 import Flip21State, RoundPhase
from logging_config import get_logger
from models.views import ActionResult, ColorClashView, Flip21View
from stores.base import SnapshotStore, SnapshotUpdate, StoredSnapshot, snapshot_key
from turn_timer import TimerKey, TurnTimerScheduler
from turns import seconds_remaining


Transition = Callable[[Any], Optional[Any]]


class GameSession:
    """
    One player's connection to a room's shared game snapshot.

    Subclasses set GAME and STATE_CLASS and build their view from a state.
    """

    GAME = ""
    STATE_CLASS: Any = None

    def __init__(
        self,
        store: SnapshotStore,
        room_code: str,
        my_id: str,
        timers: Optional[TurnTimerScheduler] = None,
        rng: Optional[random.Random] = None,
        write_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        """
        Initialize a session.

        Args:
            store: Shared snapshot store.
            room_code: Room to play in.
            my_id: This client's player ID.
            timers: Turn timer scheduler (one per session by default).
            rng: Random source for shuffles.
            write_retries: Retries after a TransportFailure.
            retry_backoff: Seconds added to the wait before each retry.
        """
        self.store = store
        self.room_code = room_code
        self.my_id = my_id
        self.key = snapshot_key(self.GAME, room_code)
        self.timers = timers or TurnTimerScheduler()
        self.rng = rng or random.Random()
        self.write_retries = config.SYNC_WRITE_RETRIES if write_retries is None else write_retries
        self.retry_backoff = config.SYNC_RETRY_BACKOFF if retry_backoff is None else retry_backoff

        self.state = None
        self.error_message: Optional[str] = None
        self._subscribed = False
        self.log = get_logger(__name__).with_context(
            room_code=room_code, player_id=my_id, game=self.GAME
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Subscribe to the room and load the current snapshot, if any.

        Raises:
            TransportFailure: If the store cannot be reached.
        """
        if not self._subscribed:
            await self.store.subscribe(self.key, self._on_update)
            self._subscribed = True
        await self.refresh()
        self.log.info("Session started")

    async def stop(self) -> None:
        """Unsubscribe and cancel timers. No game state is rolled back."""
        if self._subscribed:
            await self.store.unsubscribe(self.key, self._on_update)
            self._subscribed = False
        self.timers.cancel_room(self.room_code)
        self.log.info("Session stopped")

    async def refresh(self) -> None:
        """
        Reload the latest snapshot and rebuild the view.

        Raises:
            TransportFailure: If the store cannot be reached.
        """
        snapshot = await self.store.load(self.key)
        if snapshot is not None:
            await self._apply_snapshot(snapshot)

    async def start_game(self, participant_ids: list[str], **options) -> ActionResult:
        """
        Deal a new game for the room and write its opening snapshot.

        Called by the host. Replaces any previous game in the room.

        Args:
            participant_ids: Players in seat order.
            **options: Passed to the game's new_game().
        """

        async def attempt() -> None:
            state = self._new_game(participant_ids, **options)
            snapshot = await self.store.create(self.key, state.to_dict())
            await self._apply_snapshot(snapshot)

        return await self._run_action("start_game", attempt)

    # -------------------------------------------------------------------------
    # Snapshot handling
    # -------------------------------------------------------------------------

    async def _on_update(self, update: SnapshotUpdate) -> None:
        if update.error is not None:
            self.error_message = str(update.error)
            self.log.warning(f"Subscription error: {update.error}")
            return
        await self._apply_snapshot(update.snapshot)

    async def _apply_snapshot(self, snapshot: StoredSnapshot) -> bool:
        """
        Adopt a snapshot if it is newer than the one held.

        Returns:
            True if the local state was replaced.
        """
        if self.state is not None and snapshot.version <= self.state.version:
            return False

        state = self.STATE_CLASS.from_dict(snapshot.document)
        state.version = snapshot.version
        self.state = state
        self._rebuild_view()
        await self._on_state_changed(state)
        return True

    def _rebuild_view(self) -> None:
        raise NotImplementedError

    async def _on_state_changed(self, state) -> None:
        """Hook run after every newer snapshot is adopted."""

    def _new_game(self, participant_ids: list[str], **options):
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def _load_latest(self):
        snapshot = await self.store.load(self.key)
        if snapshot is None:
            raise InvalidAction("No game in progress")
        await self._apply_snapshot(snapshot)
        state = self.STATE_CLASS.from_dict(snapshot.document)
        state.version = snapshot.version
        return state

    async def _perform(self, action: str, transition: Transition) -> ActionResult:
        """
        Read the latest snapshot, apply a transition and commit the result.

        Args:
            action: Name for logging.
            transition: Pure function of the latest state returning the
                next state, or None when there is nothing to write.
        """

        async def attempt() -> None:
            latest = await self._load_latest()
            new = transition(latest)
            if new is None:
                return
            snapshot = await self.store.compare_and_set(self.key, latest.version, new.to_dict())
            await self._apply_snapshot(snapshot)

        return await self._run_action(action, attempt)

    async def _run_action(self, action: str, attempt: Callable[[], Awaitable[None]]) -> ActionResult:
        retries = 0
        while True:
            try:
                await attempt()
            except GameError as e:
                self.log.debug(f"{action} rejected: {e.message}")
                self.error_message = e.message
                return ActionResult.failed(e.message, e.code)
            except ConcurrencyError as e:
                self.log.warning(f"{action} lost a write race: {e}")
                self.error_message = "The game changed before your move was saved"
                try:
                    await self.refresh()
                except TransportFailure as refresh_error:
                    self.log.warning(f"Refresh after conflict failed: {refresh_error}")
                return ActionResult.failed(self.error_message, e.code)
            except TransportFailure as e:
                retries += 1
                if retries > self.write_retries:
                    self.log.error(f"{action} failed after {retries} attempts: {e}")
                    self.error_message = f"Connection problem: {e}"
                    return ActionResult.failed(self.error_message, e.code)
                self.log.warning(f"{action} transport failure, retry {retries}: {e}")
                await asyncio.sleep(self.retry_backoff * retries)
            else:
                self.error_message = None
                return ActionResult.ok()


class ColorClashSession(GameSession):
    """A player's Color Clash session."""

    GAME = color_clash.GAME_TYPE
    STATE_CLASS = ColorClashState

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.view: Optional[ColorClashView] = None
        self.pending_wild: Optional[PendingWildPlay] = None

    def _new_game(self, participant_ids: list[str], **options) -> ColorClashState:
        return color_clash.new_game(self.room_code, participant_ids, rng=self.rng, **options)

    def _rebuild_view(self) -> None:
        self.view = ColorClashView.from_state(self.state, self.my_id)

    def remaining_seconds(self) -> float:
        if self.state is None:
            return 0.0
        return seconds_remaining(self.state.turn_started_at, self.state.turn_duration)

    async def _on_state_changed(self, state: ColorClashState) -> None:
        if self.pending_wild and self.pending_wild.turn_generation != state.turn_generation:
            self.pending_wild = None

        if state.status != GameStatus.PLAYING:
            self.timers.cancel_room(self.room_code)
            return

        # Each client only runs the countdown for its own turn
        if state.current_player_id != self.my_id:
            self.timers.cancel_room(self.room_code)
            return

        key = TimerKey(self.room_code, self.my_id, state.turn_generation)
        if self.timers.active_key(self.room_code) != key:
            duration = seconds_remaining(state.turn_started_at, state.turn_duration)
            self.timers.start(key, duration, self._on_turn_expired)

    async def _on_turn_expired(self, key: TimerKey) -> None:
        self.log.info(f"Turn timer expired, auto-drawing (generation {key.generation})")
        self.pending_wild = None
        await self._perform(
            "auto_draw",
            lambda s: color_clash.auto_draw(s, key.player_id, key.generation, rng=self.rng),
        )

    async def play_card(
        self,
        card_id: str,
        chosen_color: Optional[CardColor] = None,
    ) -> ActionResult:
        """
        Play a card. A wild without a color leaves a pending wild play and
        reports WILD_COLOR_REQUIRED; finish it with select_wild_color().
        """
        result = await self._perform(
            "play_card",
            lambda s: color_clash.play_card(s, self.my_id, card_id, chosen_color),
        )
        if result.code == WILD_COLOR_REQUIRED and self.state is not None:
            self.pending_wild = PendingWildPlay(card_id, self.state.turn_generation)
        elif result.success:
            self.pending_wild = None
        return result

    async def select_wild_color(self, color: CardColor) -> ActionResult:
        """Complete the pending wild play with the chosen color."""
        pending = self.pending_wild
        if pending is None:
            return ActionResult.failed("No wild card is waiting for a color")
        if self.state is None or self.state.turn_generation != pending.turn_generation:
            self.pending_wild = None
            return ActionResult.failed("Your turn has already ended")

        self.pending_wild = None
        return await self.play_card(pending.card_id, color)

    def cancel_wild(self) -> None:
        """Drop a pending wild play without writing anything."""
        self.pending_wild = None

    async def draw_card(self) -> ActionResult:
        self.pending_wild = None
        return await self._perform(
            "draw_card", lambda s: color_clash.draw_card(s, self.my_id, rng=self.rng)
        )

    async def declare_last_card(self) -> ActionResult:
        return await self._perform(
            "declare_last_card", lambda s: color_clash.declare_last_card(s, self.my_id)
        )

    async def skip_turn(self) -> ActionResult:
        self.pending_wild = None
        return await self._perform("skip_turn", lambda s: color_clash.skip_turn(s, self.my_id))


class Flip21Session(GameSession):
    """
    A player's Flip 21 session.

    The client whose action ended the player turns drives the dealer: it
    writes one snapshot per dealer card, pausing between draws, and then
    resolves the round.
    """

    GAME = flip21.GAME_TYPE
    STATE_CLASS = Flip21State

    def __init__(self, *args, dealer_delay: Optional[float] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.view: Optional[Flip21View] = None
        self.dealer_delay = DEALER_DRAW_DELAY if dealer_delay is None else dealer_delay
        self.turn_time_up = False
        self._dealer_task: Optional[asyncio.Task] = None

    def _new_game(self, participant_ids: list[str], **options) -> Flip21State:
        return flip21.new_game(self.room_code, participant_ids, rng=self.rng, **options)

    def _rebuild_view(self) -> None:
        self.view = Flip21View.from_state(self.state, self.my_id)

    def remaining_seconds(self) -> float:
        if self.state is None:
            return 0.0
        return seconds_remaining(self.state.turn_started_at, self.state.turn_duration)

    async def stop(self) -> None:
        if self._dealer_task and not self._dealer_task.done():
            self._dealer_task.cancel()
            try:
                await self._dealer_task
            except asyncio.CancelledError:
                pass
        self._dealer_task = None
        await super().stop()

    async def wait_for_dealer(self) -> None:
        """Wait until this client's dealer run (if any) has finished."""
        if self._dealer_task is not None:
            await self._dealer_task

    async def _on_state_changed(self, state: Flip21State) -> None:
        self._update_turn_clock(state)

        driving = state.dealer_driver_id == self.my_id and not state.match_over
        if driving and state.phase in (RoundPhase.DEALER_TURN, RoundPhase.RESOLVING):
            if self._dealer_task is None or self._dealer_task.done():
                self._dealer_task = asyncio.create_task(self._drive_dealer())

    def _update_turn_clock(self, state: Flip21State) -> None:
        """The Flip 21 clock is advisory: expiry only flags the view."""
        self.turn_time_up = False
        if state.current_player_id != self.my_id:
            self.timers.cancel_room(self.room_code)
            return

        key = TimerKey(self.room_code, self.my_id, state.turn_generation)
        if self.timers.active_key(self.room_code) != key:
            duration = seconds_remaining(state.turn_started_at, state.turn_duration)
            self.timers.start(key, duration, self._on_turn_expired)

    async def _on_turn_expired(self, key: TimerKey) -> None:
        if self.state is not None and self.state.turn_generation == key.generation:
            self.turn_time_up = True
            self.log.info("Turn time is up (no automatic action in Flip 21)")

    async def _drive_dealer(self) -> None:
        """Play the dealer turn one card at a time, then resolve the round."""
        self.log.info("Driving dealer turn")
        while self.state is not None:
            phase = self.state.phase
            if phase == RoundPhase.DEALER_TURN:
                await asyncio.sleep(self.dealer_delay)
                result = await self._perform("dealer_step", self._dealer_step)
            elif phase == RoundPhase.RESOLVING:
                result = await self._perform("resolve_round", self._resolve)
            else:
                break
            if result.code == STALE_SNAPSHOT:
                # Refreshed already; carry on from the newer snapshot
                continue
            if not result.success:
                self.log.warning(f"Dealer turn stopped: {result.reason}")
                break

    def _dealer_step(self, state: Flip21State) -> Optional[Flip21State]:
        if state.phase != RoundPhase.DEALER_TURN:
            return None
        return flip21.dealer_step(state, rng=self.rng)

    @staticmethod
    def _resolve(state: Flip21State) -> Optional[Flip21State]:
        if state.phase != RoundPhase.RESOLVING:
            return None
        return flip21.resolve_round(state)

    async def hit(self) -> ActionResult:
        return await self._perform("hit", lambda s: flip21.hit(s, self.my_id, rng=self.rng))

    async def lock(self) -> ActionResult:
        return await self._perform("lock", lambda s: flip21.lock(s, self.my_id))

    async def start_next_round(self) -> ActionResult:
        return await self._perform(
            "start_next_round",
            lambda s: flip21.start_next_round(s, self.my_id, rng=self.rng),
        )
