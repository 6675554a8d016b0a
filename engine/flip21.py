"""
Game logic for Flip 21, the blackjack-style elimination tournament.

Like Color Clash, every operation is a pure transition from one snapshot to
the next and raises a GameError without touching its input when rejected.

Flip 21 Rules Summary:
    - Each round every remaining player and the dealer get ONE face-up card
      (no hole card)
    - In seat order, players hit (draw a face-up card) or lock (stand)
    - Going over 21 busts the hand and ends that player's turn
    - When everyone is locked or busted, the dealer draws until 17 or more
    - Locked players beat a busted dealer, beat a lower dealer total, push on
      an equal total and lose to a higher one; busted players always lose
    - Only round winners continue. Losses AND pushes are eliminated
    - The match ends when fewer than two players win a round

Round phases:
    DEALING -> PLAYER_TURNS -> DEALER_TURN -> RESOLVING -> FINISHED
"""

import copy
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from cards import Flip21Card, create_standard_elimination_deck, hand_value, is_busted
from constants import (
    DEALER_STAND_VALUE,
    FLIP21_CARDS_PER_DEAL,
    MAX_PLAYERS,
    MIN_PLAYERS,
    TURN_DURATION_SECONDS,
)
from deck import Deck
from errors import DeckExhausted, GameFinished, InvalidAction, NotYourTurn
from turns import TurnController, format_time, parse_time, turn_deadline, utcnow

logger = logging.getLogger(__name__)

GAME_TYPE = "flip21"


class RoundPhase(str, Enum):
    """Phases of a Flip 21 round, strictly ordered."""

    DEALING = "dealing"
    PLAYER_TURNS = "playerTurns"
    DEALER_TURN = "dealerTurn"
    RESOLVING = "resolving"
    FINISHED = "finished"


class PlayerRoundStatus(str, Enum):
    """A player's status within the current round."""

    ACTIVE = "active"
    LOCKED = "locked"
    BUSTED = "busted"


class RoundResult(str, Enum):
    """Outcome of a round for one player."""

    WIN = "win"
    LOSS = "loss"
    PUSH = "push"


@dataclass
class Flip21State:
    """
    Shared Flip 21 snapshot for one room.

    Attributes:
        room_code: Room this match belongs to.
        player_order: Players still in the tournament, in seat order.
        current_player_index: Seat of the player holding the turn.
        player_hands: Player ID -> this round's hand.
        player_statuses: Player ID -> round status.
        dealer_hand: Dealer's cards (all face-up).
        deck: Draw pile (drawn from the front).
        discard_pile: Cards from finished rounds.
        phase: Current round phase.
        round_number: 1-based round counter.
        scores: Player ID -> rounds won.
        round_results: Player ID -> result of the last resolved round.
        eliminated: Players removed from the tournament, in elimination order.
        dealer_driver_id: Client responsible for running the dealer turn.
        match_over: Whether the tournament has ended.
        winner_id: Overall winner (None when nobody survived).
        turn_started_at: When the current turn began (UTC).
        turn_duration: Seconds shown on the (advisory) turn clock.
        turn_generation: Incremented on every change of turn ownership.
        version: Store version this snapshot was read at.
    """

    room_code: str
    player_order: list[str] = field(default_factory=list)
    current_player_index: int = 0
    player_hands: dict[str, list[Flip21Card]] = field(default_factory=dict)
    player_statuses: dict[str, PlayerRoundStatus] = field(default_factory=dict)
    dealer_hand: list[Flip21Card] = field(default_factory=list)
    deck: list[Flip21Card] = field(default_factory=list)
    discard_pile: list[Flip21Card] = field(default_factory=list)
    phase: RoundPhase = RoundPhase.DEALING
    round_number: int = 1
    scores: dict[str, int] = field(default_factory=dict)
    round_results: dict[str, RoundResult] = field(default_factory=dict)
    eliminated: list[str] = field(default_factory=list)
    dealer_driver_id: Optional[str] = None
    match_over: bool = False
    winner_id: Optional[str] = None
    turn_started_at: Optional[datetime] = None
    turn_duration: float = TURN_DURATION_SECONDS
    turn_generation: int = 0
    version: int = 0

    @property
    def current_player_id(self) -> Optional[str]:
        if self.phase != RoundPhase.PLAYER_TURNS or not self.player_order:
            return None
        return self.player_order[self.current_player_index]

    @property
    def dealer_value(self) -> int:
        return hand_value(self.dealer_hand)

    @property
    def turn_deadline(self) -> Optional[datetime]:
        return turn_deadline(self.turn_started_at, self.turn_duration)

    @property
    def all_players_finished(self) -> bool:
        """True when every remaining player is locked or busted."""
        return all(
            self.player_statuses.get(pid) != PlayerRoundStatus.ACTIVE
            for pid in self.player_order
        )

    def hand(self, player_id: str) -> list[Flip21Card]:
        return self.player_hands.get(player_id, [])

    def hand_value(self, player_id: str) -> int:
        return hand_value(self.hand(player_id))

    def status_of(self, player_id: str) -> Optional[PlayerRoundStatus]:
        return self.player_statuses.get(player_id)

    def total_cards(self) -> int:
        """Count every card in play; always ELIMINATION_DECK_SIZE."""
        in_hands = sum(len(h) for h in self.player_hands.values())
        return len(self.deck) + len(self.discard_pile) + len(self.dealer_hand) + in_hands

    def round_winners(self) -> list[str]:
        """Players (in seat order) who won the last resolved round."""
        return [
            pid for pid in self.player_order
            if self.round_results.get(pid) == RoundResult.WIN
        ]

    def copy(self) -> "Flip21State":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        """Serialize the snapshot to a JSON-safe dict."""
        return {
            "game": GAME_TYPE,
            "room_code": self.room_code,
            "player_order": list(self.player_order),
            "current_player_index": self.current_player_index,
            "player_hands": {
                pid: [c.to_dict() for c in hand]
                for pid, hand in self.player_hands.items()
            },
            "player_statuses": {pid: s.value for pid, s in self.player_statuses.items()},
            "dealer_hand": [c.to_dict() for c in self.dealer_hand],
            "deck": [c.to_dict() for c in self.deck],
            "discard_pile": [c.to_dict() for c in self.discard_pile],
            "phase": self.phase.value,
            "round_number": self.round_number,
            "scores": dict(self.scores),
            "round_results": {pid: r.value for pid, r in self.round_results.items()},
            "eliminated": list(self.eliminated),
            "dealer_driver_id": self.dealer_driver_id,
            "match_over": self.match_over,
            "winner_id": self.winner_id,
            "turn_started_at": format_time(self.turn_started_at),
            "turn_duration": self.turn_duration,
            "turn_generation": self.turn_generation,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Flip21State":
        """Deserialize a snapshot dict."""
        return cls(
            room_code=d["room_code"],
            player_order=list(d.get("player_order", [])),
            current_player_index=d.get("current_player_index", 0),
            player_hands={
                pid: [Flip21Card.from_dict(c) for c in hand]
                for pid, hand in d.get("player_hands", {}).items()
            },
            player_statuses={
                pid: PlayerRoundStatus(s) for pid, s in d.get("player_statuses", {}).items()
            },
            dealer_hand=[Flip21Card.from_dict(c) for c in d.get("dealer_hand", [])],
            deck=[Flip21Card.from_dict(c) for c in d.get("deck", [])],
            discard_pile=[Flip21Card.from_dict(c) for c in d.get("discard_pile", [])],
            phase=RoundPhase(d.get("phase", RoundPhase.DEALING.value)),
            round_number=d.get("round_number", 1),
            scores=dict(d.get("scores", {})),
            round_results={
                pid: RoundResult(r) for pid, r in d.get("round_results", {}).items()
            },
            eliminated=list(d.get("eliminated", [])),
            dealer_driver_id=d.get("dealer_driver_id"),
            match_over=d.get("match_over", False),
            winner_id=d.get("winner_id"),
            turn_started_at=parse_time(d.get("turn_started_at")),
            turn_duration=d.get("turn_duration", TURN_DURATION_SECONDS),
            turn_generation=d.get("turn_generation", 0),
            version=d.get("version", 0),
        )


def _face_down(card: Flip21Card) -> None:
    card.is_revealed = False


def _deck(state: Flip21State, rng: Optional[random.Random]) -> Deck[Flip21Card]:
    return Deck(state.deck, state.discard_pile, rng=rng, reset_card=_face_down)


def _draw_face_up(state: Flip21State, deck: Deck[Flip21Card]) -> Flip21Card:
    """
    Draw one card and turn it face-up.

    While the dealer shows a card, that card anchors the table and the
    whole discard pile may be reshuffled.

    Raises:
        DeckExhausted: If no card is left anywhere.
    """
    card = deck.draw_one(keep_top=not state.dealer_hand)
    if card is None:
        raise DeckExhausted("No cards left in the deck")
    card.is_revealed = True
    return card


def _deal_round(state: Flip21State, deck: Deck[Flip21Card], now: Optional[datetime]) -> None:
    """Deal the opening cards of a round and hand the turn to the first seat."""
    state.phase = RoundPhase.DEALING
    state.dealer_hand = []
    state.player_hands = {pid: [] for pid in state.player_order}
    state.player_statuses = {pid: PlayerRoundStatus.ACTIVE for pid in state.player_order}

    for _ in range(FLIP21_CARDS_PER_DEAL):
        for pid in state.player_order:
            state.player_hands[pid].append(_draw_face_up(state, deck))
    for _ in range(FLIP21_CARDS_PER_DEAL):
        state.dealer_hand.append(_draw_face_up(state, deck))

    state.phase = RoundPhase.PLAYER_TURNS
    state.current_player_index = 0
    state.dealer_driver_id = None
    state.turn_generation += 1
    state.turn_started_at = now or utcnow()


def _require_player_turn(state: Flip21State, player_id: str) -> None:
    if state.match_over:
        raise GameFinished("The match is over")
    if state.phase != RoundPhase.PLAYER_TURNS:
        raise InvalidAction(f"Cannot act during {state.phase.value}")
    if state.current_player_id != player_id:
        raise NotYourTurn("Not your turn")
    if state.player_statuses.get(player_id) != PlayerRoundStatus.ACTIVE:
        raise InvalidAction("You've already locked or busted")


def _end_player_turn(state: Flip21State, player_id: str, now: Optional[datetime]) -> None:
    """
    Pass the turn after a player locks or busts.

    Moves to the next active player, or to the dealer turn when nobody is
    left to act. The player whose action starts the dealer turn drives it.
    """
    state.turn_generation += 1

    if state.all_players_finished:
        state.phase = RoundPhase.DEALER_TURN
        state.dealer_driver_id = player_id
        state.turn_started_at = None
        logger.debug(f"Dealer turn in room {state.room_code}, driven by {player_id}")
        return

    turn = TurnController(len(state.player_order), state.current_player_index)
    turn.advance_until(
        lambda i: state.player_statuses.get(state.player_order[i]) == PlayerRoundStatus.ACTIVE
    )
    state.current_player_index = turn.current_index
    state.turn_started_at = now or utcnow()


# -------------------------------------------------------------------------
# Match Lifecycle
# -------------------------------------------------------------------------

def new_game(
    room_code: str,
    player_ids: list[str],
    rng: Optional[random.Random] = None,
    turn_duration: float = TURN_DURATION_SECONDS,
    now: Optional[datetime] = None,
) -> Flip21State:
    """
    Create the opening snapshot of a tournament and deal round one.

    Args:
        room_code: Room the match is played in.
        player_ids: Participants in seat order.
        rng: Random source for shuffles.
        turn_duration: Seconds shown on the turn clock.
        now: Current time.

    Returns:
        Snapshot in PLAYER_TURNS with the first seat to act.

    Raises:
        InvalidAction: If the player list is invalid.
    """
    if len(set(player_ids)) != len(player_ids):
        raise InvalidAction("Player IDs must be unique")
    if not MIN_PLAYERS <= len(player_ids) <= MAX_PLAYERS:
        raise InvalidAction(
            f"Flip 21 needs {MIN_PLAYERS}-{MAX_PLAYERS} players, got {len(player_ids)}"
        )

    state = Flip21State(
        room_code=room_code,
        player_order=list(player_ids),
        deck=create_standard_elimination_deck(),
        scores={pid: 0 for pid in player_ids},
        turn_duration=turn_duration,
    )
    deck = _deck(state, rng)
    deck.shuffle()
    _deal_round(state, deck, now)

    logger.info(f"Flip 21 started in room {room_code} with {len(player_ids)} players")
    return state


def start_next_round(
    state: Flip21State,
    player_id: str,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> Flip21State:
    """
    Eliminate everyone who did not win and deal the next round.

    Only a winner of the last round may trigger this. Pushes are eliminated
    just like losses. Every hand, the dealer's included, goes to the discard
    pile before the fresh deal.

    Args:
        state: Latest snapshot (phase FINISHED).
        player_id: Player asking to continue.
        rng: Random source for a reshuffle.
        now: Current time.

    Returns:
        Snapshot for the new round in PLAYER_TURNS.

    Raises:
        GameFinished: If the tournament is over.
        InvalidAction: If the round is not finished or the player did not win it.
    """
    if state.match_over:
        raise GameFinished("The match is over")
    if state.phase != RoundPhase.FINISHED:
        raise InvalidAction("The round is not finished yet")
    if state.round_results.get(player_id) != RoundResult.WIN:
        raise InvalidAction("Only winners can advance to the next round")

    new = state.copy()
    survivors = new.round_winners()
    for pid in new.player_order:
        if pid not in survivors:
            new.eliminated.append(pid)
    new.player_order = survivors

    for hand in new.player_hands.values():
        new.discard_pile.extend(hand)
    new.discard_pile.extend(new.dealer_hand)
    new.dealer_hand = []
    new.player_hands = {}

    new.round_number += 1
    new.round_results = {}
    _deal_round(new, _deck(new, rng), now)

    logger.info(
        f"Flip 21 round {new.round_number} in room {state.room_code}: "
        f"{len(survivors)} players remain"
    )
    return new


# -------------------------------------------------------------------------
# Player Actions
# -------------------------------------------------------------------------

def hit(
    state: Flip21State,
    player_id: str,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> Flip21State:
    """
    Draw one face-up card for the current player.

    A bust ends the player's turn; otherwise they keep the turn and may hit
    again or lock.

    Raises:
        GameFinished, InvalidAction, NotYourTurn, DeckExhausted.
    """
    _require_player_turn(state, player_id)

    new = state.copy()
    card = _draw_face_up(new, _deck(new, rng))
    hand = new.player_hands.setdefault(player_id, [])
    hand.append(card)

    if is_busted(hand):
        new.player_statuses[player_id] = PlayerRoundStatus.BUSTED
        logger.debug(f"Player {player_id} busted with {hand_value(hand)}")
        _end_player_turn(new, player_id, now)

    return new


def lock(
    state: Flip21State,
    player_id: str,
    now: Optional[datetime] = None,
) -> Flip21State:
    """
    Stand on the current hand and end the turn.

    Raises:
        GameFinished, InvalidAction, NotYourTurn.
    """
    _require_player_turn(state, player_id)

    new = state.copy()
    new.player_statuses[player_id] = PlayerRoundStatus.LOCKED
    _end_player_turn(new, player_id, now)
    return new


# -------------------------------------------------------------------------
# Dealer Turn
# -------------------------------------------------------------------------

def dealer_should_draw(state: Flip21State) -> bool:
    """Check if the dealer must take another card (below the stand value)."""
    return (
        state.phase == RoundPhase.DEALER_TURN
        and hand_value(state.dealer_hand) < DEALER_STAND_VALUE
    )


def _require_dealer_turn(state: Flip21State) -> None:
    if state.match_over:
        raise GameFinished("The match is over")
    if state.phase != RoundPhase.DEALER_TURN:
        raise InvalidAction(f"Not the dealer's turn ({state.phase.value})")


def dealer_draw(state: Flip21State, rng: Optional[random.Random] = None) -> Flip21State:
    """
    Draw one card for the dealer.

    Draws are sequential: the dealer driver writes one snapshot per card.

    Raises:
        InvalidAction: If the dealer must not draw.
        DeckExhausted: If no card is left anywhere.
    """
    _require_dealer_turn(state)
    if not dealer_should_draw(state):
        raise InvalidAction(f"Dealer stands on {state.dealer_value}")

    new = state.copy()
    new.dealer_hand.append(_draw_face_up(new, _deck(new, rng)))
    return new


def finish_dealer_turn(state: Flip21State) -> Flip21State:
    """
    End the dealer turn and move to RESOLVING.

    Allowed once the dealer reached the stand value, or when no card is
    left to draw.

    Raises:
        InvalidAction: If the dealer still has to draw.
    """
    _require_dealer_turn(state)
    deck = Deck(state.deck, state.discard_pile)
    if dealer_should_draw(state) and deck.available(keep_top=False) > 0:
        raise InvalidAction("Dealer must keep drawing")

    new = state.copy()
    new.phase = RoundPhase.RESOLVING
    logger.debug(f"Dealer stands on {new.dealer_value} in room {state.room_code}")
    return new


def dealer_step(state: Flip21State, rng: Optional[random.Random] = None) -> Flip21State:
    """
    Advance the dealer turn by one step: draw a card, or stand.

    Returns:
        Snapshot with one more dealer card, or in RESOLVING.
    """
    _require_dealer_turn(state)
    deck = Deck(state.deck, state.discard_pile)
    if dealer_should_draw(state) and deck.available(keep_top=False) > 0:
        return dealer_draw(state, rng)
    return finish_dealer_turn(state)


def resolve_round(state: Flip21State) -> Flip21State:
    """
    Score the round against the dealer and decide whether the match ends.

    Locked players win against a busted dealer or a lower total, push on an
    equal total and lose to a higher one. Busted players lose outright.
    Winners' scores increase by one. With fewer than two winners the match
    is over: a sole winner takes the tournament, otherwise nobody does.

    Raises:
        InvalidAction: If the round is not in RESOLVING.
    """
    if state.phase != RoundPhase.RESOLVING:
        raise InvalidAction(f"Cannot resolve during {state.phase.value}")

    new = state.copy()
    dealer_value = hand_value(new.dealer_hand)
    dealer_busted = is_busted(new.dealer_hand)

    results: dict[str, RoundResult] = {}
    for pid in new.player_order:
        status = new.player_statuses.get(pid, PlayerRoundStatus.ACTIVE)
        player_value = hand_value(new.player_hands.get(pid, []))

        if status != PlayerRoundStatus.LOCKED:
            # Busted, or never finished acting
            results[pid] = RoundResult.LOSS
        elif dealer_busted or player_value > dealer_value:
            results[pid] = RoundResult.WIN
        elif player_value == dealer_value:
            results[pid] = RoundResult.PUSH
        else:
            results[pid] = RoundResult.LOSS

    for pid, result in results.items():
        if result == RoundResult.WIN:
            new.scores[pid] = new.scores.get(pid, 0) + 1

    new.round_results = results
    new.phase = RoundPhase.FINISHED
    new.turn_started_at = None

    winners = new.round_winners()
    if len(winners) < 2:
        new.match_over = True
        new.winner_id = winners[0] if winners else None
        logger.info(f"Flip 21 match over in room {state.room_code}, winner: {new.winner_id}")
    else:
        logger.info(
            f"Flip 21 round {new.round_number} resolved in room {state.room_code}: "
            f"{len(winners)} winners"
        )

    return new
