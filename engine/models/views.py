"""
Read-only client views derived from a shared snapshot.

A view is rebuilt in full from every snapshot a client receives, never
patched incrementally, so a client that missed intermediate writes still
ends up showing the right table.

Usage:
    view = ColorClashView.from_state(state, my_id="alice")
    if view.is_my_turn:
        ...
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from cards import CardColor, ColorClashCard, Flip21Card, hand_value
from color_clash import ColorClashState, GameStatus, PlayerActionType
from flip21 import Flip21State, PlayerRoundStatus, RoundPhase, RoundResult
from turns import seconds_remaining


@dataclass
class ActionResult:
    """
    Outcome of an imperative session action.

    Attributes:
        success: Whether the action was committed.
        reason: Human-readable reason when it was not.
        code: Machine-readable error code when it was not.
    """

    success: bool
    reason: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def ok(cls) -> "ActionResult":
        return cls(True)

    @classmethod
    def failed(cls, reason: str, code: Optional[str] = None) -> "ActionResult":
        return cls(False, reason, code)


@dataclass
class ColorClashView:
    """What one Color Clash client shows."""

    my_id: str
    version: int
    my_hand: list[ColorClashCard]
    top_card: Optional[ColorClashCard]
    current_color: CardColor
    burned_color: Optional[CardColor]
    current_player_id: Optional[str]
    is_my_turn: bool
    pending_draw: int
    must_draw: bool
    hand_counts: dict[str, int]
    last_card_declared: dict[str, bool]
    last_action_player: Optional[str]
    last_action_type: Optional[PlayerActionType]
    status: GameStatus
    winner_id: Optional[str]
    turn_deadline: Optional[datetime]
    remaining_seconds: float
    turn_generation: int
    deck_count: int = 0
    player_order: list[str] = field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        return self.status == GameStatus.FINISHED

    @property
    def did_i_win(self) -> bool:
        return self.winner_id == self.my_id

    @classmethod
    def from_state(
        cls,
        state: ColorClashState,
        my_id: str,
        now: Optional[datetime] = None,
    ) -> "ColorClashView":
        current = state.current_player_id
        is_my_turn = current == my_id
        return cls(
            my_id=my_id,
            version=state.version,
            my_hand=list(state.hand(my_id)),
            top_card=state.top_card,
            current_color=state.current_color,
            burned_color=state.burned_color,
            current_player_id=current,
            is_my_turn=is_my_turn,
            pending_draw=state.pending_draw,
            must_draw=is_my_turn and state.pending_draw > 0 and state.skip_next_player,
            hand_counts={pid: state.hand_count(pid) for pid in state.player_order},
            last_card_declared=dict(state.last_card_declared),
            last_action_player=state.last_action_player,
            last_action_type=state.last_action_type,
            status=state.status,
            winner_id=state.winner_id,
            turn_deadline=state.turn_deadline,
            remaining_seconds=seconds_remaining(state.turn_started_at, state.turn_duration, now),
            turn_generation=state.turn_generation,
            deck_count=len(state.deck),
            player_order=list(state.player_order),
        )


@dataclass
class Flip21View:
    """What one Flip 21 client shows."""

    my_id: str
    version: int
    my_hand: list[Flip21Card]
    my_value: int
    my_status: Optional[PlayerRoundStatus]
    dealer_hand: list[Flip21Card]
    dealer_value: int
    phase: RoundPhase
    round_number: int
    current_player_id: Optional[str]
    is_my_turn: bool
    player_order: list[str]
    player_statuses: dict[str, PlayerRoundStatus]
    scores: dict[str, int]
    round_results: dict[str, RoundResult]
    eliminated: list[str]
    am_eliminated: bool
    can_start_next_round: bool
    is_dealer_driver: bool
    match_over: bool
    winner_id: Optional[str]
    turn_deadline: Optional[datetime]
    remaining_seconds: float

    @property
    def my_result(self) -> Optional[RoundResult]:
        return self.round_results.get(self.my_id)

    @classmethod
    def from_state(
        cls,
        state: Flip21State,
        my_id: str,
        now: Optional[datetime] = None,
    ) -> "Flip21View":
        current = state.current_player_id
        my_hand = list(state.hand(my_id))
        can_continue = (
            state.phase == RoundPhase.FINISHED
            and not state.match_over
            and state.round_results.get(my_id) == RoundResult.WIN
        )
        return cls(
            my_id=my_id,
            version=state.version,
            my_hand=my_hand,
            my_value=hand_value(my_hand),
            my_status=state.status_of(my_id),
            dealer_hand=list(state.dealer_hand),
            dealer_value=state.dealer_value,
            phase=state.phase,
            round_number=state.round_number,
            current_player_id=current,
            is_my_turn=current == my_id,
            player_order=list(state.player_order),
            player_statuses=dict(state.player_statuses),
            scores=dict(state.scores),
            round_results=dict(state.round_results),
            eliminated=list(state.eliminated),
            am_eliminated=my_id in state.eliminated,
            can_start_next_round=can_continue,
            is_dealer_driver=(
                state.phase == RoundPhase.DEALER_TURN and state.dealer_driver_id == my_id
            ),
            match_over=state.match_over,
            winner_id=state.winner_id,
            turn_deadline=state.turn_deadline,
            remaining_seconds=seconds_remaining(state.turn_started_at, state.turn_duration, now),
        )
