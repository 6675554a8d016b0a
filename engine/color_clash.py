"""
Game logic for Color Clash, the online color-matching card game.

Every operation is a pure transition: it takes the latest shared snapshot,
validates the action, and returns a brand-new snapshot. A rejected action
raises a GameError and leaves the input untouched, so nothing is ever
written for a failed action.

Color Clash Rules Summary:
    - Each player starts with 7 cards; the first discard is a number card
    - On your turn: play a card matching the current color, number or kind,
      play a wild (choosing a color), draw, or pass
    - Skip: the next player loses their turn
    - Reverse: direction of play flips (acts as Skip with two players)
    - Draw Two / Wild Draw Four: the next player must draw 2 / 4 cards,
      which uses up their turn
    - Drawing always ends your turn
    - First player to empty their hand wins

Turn flow:
    PLAYING: current player plays/draws/passes -> effect resolution -> next
    FINISHED: a hand was emptied; no further mutation is accepted
"""

import copy
import logging
import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from cards import (
    CardColor,
    ColorClashCard,
    ColorClashKind,
    can_play,
    create_standard_matching_deck,
)
from constants import (
    COLOR_CLASH_HAND_SIZE,
    DRAW_TWO_PENALTY,
    MAX_PLAYERS,
    MIN_PLAYERS,
    TURN_DURATION_SECONDS,
    WILD_DRAW_FOUR_PENALTY,
)
from deck import Deck
from errors import (
    CardNotInHand,
    DeckExhausted,
    GameFinished,
    InvalidAction,
    InvalidCardPlay,
    NotYourTurn,
    WildColorRequired,
)
from turns import TurnController, format_time, parse_time, turn_deadline, utcnow

logger = logging.getLogger(__name__)

GAME_TYPE = "color_clash"


class GameStatus(str, Enum):
    """Lifecycle status of a Color Clash match."""

    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


class PlayerActionType(str, Enum):
    """Kind of the last action taken, for other clients to display."""

    PLAYED = "played"
    SKIPPED = "skipped"
    DREW = "drew"


@dataclass
class ColorClashState:
    """
    Shared Color Clash snapshot for one room.

    Attributes:
        room_code: Room this game belongs to.
        player_order: Seat order of participant IDs.
        player_hands: Player ID -> ordered hand.
        deck: Draw pile (drawn from the front).
        discard_pile: Played cards (top is last).
        current_player_index: Seat index of the player holding the turn.
        turn_direction: +1 clockwise, -1 counter-clockwise.
        pending_draw: Cards the current player owes from Draw Two/Four.
        skip_next_player: Skip flag; while a draw is owed it marks the
            owing player's turn as forfeit.
        current_color: Color in force for matching.
        burned_color: Optional house-rule color whose number cards are unplayable.
        status: Match status.
        winner_id: Player who emptied their hand.
        last_card_declared: Player ID -> declared "last card" (honor system).
        last_action_player: Who performed the last action.
        last_action_type: What the last action was.
        turn_started_at: When the current turn began (UTC).
        turn_duration: Seconds allowed per turn.
        turn_generation: Incremented on every change of turn ownership.
        version: Store version this snapshot was read at.
    """

    room_code: str
    player_order: list[str] = field(default_factory=list)
    player_hands: dict[str, list[ColorClashCard]] = field(default_factory=dict)
    deck: list[ColorClashCard] = field(default_factory=list)
    discard_pile: list[ColorClashCard] = field(default_factory=list)
    current_player_index: int = 0
    turn_direction: int = 1
    pending_draw: int = 0
    skip_next_player: bool = False
    current_color: CardColor = CardColor.RED
    burned_color: Optional[CardColor] = None
    status: GameStatus = GameStatus.WAITING
    winner_id: Optional[str] = None
    last_card_declared: dict[str, bool] = field(default_factory=dict)
    last_action_player: Optional[str] = None
    last_action_type: Optional[PlayerActionType] = None
    turn_started_at: Optional[datetime] = None
    turn_duration: float = TURN_DURATION_SECONDS
    turn_generation: int = 0
    version: int = 0

    @property
    def current_player_id(self) -> Optional[str]:
        if not self.player_order or self.status != GameStatus.PLAYING:
            return None
        return self.player_order[self.current_player_index]

    @property
    def top_card(self) -> Optional[ColorClashCard]:
        return self.discard_pile[-1] if self.discard_pile else None

    @property
    def turn_deadline(self) -> Optional[datetime]:
        return turn_deadline(self.turn_started_at, self.turn_duration)

    @property
    def is_finished(self) -> bool:
        return self.status == GameStatus.FINISHED

    def hand(self, player_id: str) -> list[ColorClashCard]:
        return self.player_hands.get(player_id, [])

    def hand_count(self, player_id: str) -> int:
        return len(self.hand(player_id))

    def total_cards(self) -> int:
        """Count every card in play; always MATCHING_DECK_SIZE for a standard game."""
        in_hands = sum(len(h) for h in self.player_hands.values())
        return len(self.deck) + len(self.discard_pile) + in_hands

    def copy(self) -> "ColorClashState":
        """Deep copy, so transitions never share card objects with their input."""
        return copy.deepcopy(self)

    def turn_controller(self) -> TurnController:
        """Build a TurnController from this snapshot's turn fields."""
        return TurnController(
            player_count=len(self.player_order),
            current_index=self.current_player_index,
            direction=self.turn_direction,
            skip_next=self.skip_next_player,
            pending_draw=self.pending_draw,
        )

    def apply_turn(
        self,
        turn: TurnController,
        new_turn: bool = True,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Write a TurnController's fields back into this snapshot.

        Args:
            turn: Controller holding the updated turn state.
            new_turn: Whether turn ownership changed (restarts the turn clock
                and bumps the generation so stale timers become no-ops).
            now: Current time.
        """
        self.current_player_index = turn.current_index
        self.turn_direction = turn.direction
        self.skip_next_player = turn.skip_next
        self.pending_draw = turn.pending_draw
        if new_turn:
            self.turn_generation += 1
            self.turn_started_at = now or utcnow()

    def to_dict(self) -> dict:
        """Serialize the snapshot to a JSON-safe dict."""
        return {
            "game": GAME_TYPE,
            "room_code": self.room_code,
            "player_order": list(self.player_order),
            "player_hands": {
                pid: [c.to_dict() for c in hand]
                for pid, hand in self.player_hands.items()
            },
            "deck": [c.to_dict() for c in self.deck],
            "discard_pile": [c.to_dict() for c in self.discard_pile],
            "current_player_index": self.current_player_index,
            "turn_direction": self.turn_direction,
            "pending_draw": self.pending_draw,
            "skip_next_player": self.skip_next_player,
            "current_color": self.current_color.value,
            "burned_color": self.burned_color.value if self.burned_color else None,
            "status": self.status.value,
            "winner_id": self.winner_id,
            "last_card_declared": dict(self.last_card_declared),
            "last_action_player": self.last_action_player,
            "last_action_type": self.last_action_type.value if self.last_action_type else None,
            "turn_started_at": format_time(self.turn_started_at),
            "turn_duration": self.turn_duration,
            "turn_generation": self.turn_generation,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ColorClashState":
        """Deserialize a snapshot dict."""
        return cls(
            room_code=d["room_code"],
            player_order=list(d.get("player_order", [])),
            player_hands={
                pid: [ColorClashCard.from_dict(c) for c in hand]
                for pid, hand in d.get("player_hands", {}).items()
            },
            deck=[ColorClashCard.from_dict(c) for c in d.get("deck", [])],
            discard_pile=[ColorClashCard.from_dict(c) for c in d.get("discard_pile", [])],
            current_player_index=d.get("current_player_index", 0),
            turn_direction=d.get("turn_direction", 1),
            pending_draw=d.get("pending_draw", 0),
            skip_next_player=d.get("skip_next_player", False),
            current_color=CardColor(d.get("current_color", CardColor.RED.value)),
            burned_color=CardColor(d["burned_color"]) if d.get("burned_color") else None,
            status=GameStatus(d.get("status", GameStatus.WAITING.value)),
            winner_id=d.get("winner_id"),
            last_card_declared=dict(d.get("last_card_declared", {})),
            last_action_player=d.get("last_action_player"),
            last_action_type=(
                PlayerActionType(d["last_action_type"]) if d.get("last_action_type") else None
            ),
            turn_started_at=parse_time(d.get("turn_started_at")),
            turn_duration=d.get("turn_duration", TURN_DURATION_SECONDS),
            turn_generation=d.get("turn_generation", 0),
            version=d.get("version", 0),
        )


@dataclass
class PendingWildPlay:
    """
    A wild card play waiting for its color choice.

    Held by the client only; nothing is written to the shared snapshot until
    the color is chosen and the play completes.
    """

    card_id: str
    turn_generation: int


def _reset_card(card: ColorClashCard) -> None:
    """Clear a wild's chosen color when it goes back into the deck."""
    card.selected_color = None


def _deck(state: ColorClashState, rng: Optional[random.Random]) -> Deck[ColorClashCard]:
    return Deck(state.deck, state.discard_pile, rng=rng, reset_card=_reset_card)


def _validate_players(player_ids: list[str]) -> None:
    if len(set(player_ids)) != len(player_ids):
        raise InvalidAction("Player IDs must be unique")
    if not MIN_PLAYERS <= len(player_ids) <= MAX_PLAYERS:
        raise InvalidAction(
            f"Color Clash needs {MIN_PLAYERS}-{MAX_PLAYERS} players, got {len(player_ids)}"
        )


def _require_turn(state: ColorClashState, player_id: str) -> None:
    """Reject the action unless player_id holds the turn in a live game."""
    if state.status == GameStatus.FINISHED:
        raise GameFinished("The game is over")
    if state.status != GameStatus.PLAYING:
        raise InvalidAction("The game has not started")
    if state.current_player_id != player_id:
        raise NotYourTurn("Not your turn")


# -------------------------------------------------------------------------
# Game Lifecycle
# -------------------------------------------------------------------------

def new_game(
    room_code: str,
    player_ids: list[str],
    rng: Optional[random.Random] = None,
    hand_size: int = COLOR_CLASH_HAND_SIZE,
    turn_duration: float = TURN_DURATION_SECONDS,
    burn_color: bool = False,
    now: Optional[datetime] = None,
) -> ColorClashState:
    """
    Create the opening snapshot for a match.

    Shuffles a fresh 108-card deck, deals hand_size cards to each player,
    turns the first number card in the deck onto the discard pile, and
    gives the first turn to the first seat.

    Args:
        room_code: Room the match is played in.
        player_ids: Participants in seat order.
        rng: Random source for the shuffle.
        hand_size: Cards dealt per player.
        turn_duration: Seconds allowed per turn.
        burn_color: Pick a random burned color for the match (house rule).
        now: Current time.

    Returns:
        Opening snapshot with status PLAYING.

    Raises:
        InvalidAction: If the player list is invalid.
        DeckExhausted: If the deal needs more cards than the deck holds.
    """
    _validate_players(player_ids)
    rng = rng or random.Random()

    state = ColorClashState(
        room_code=room_code,
        player_order=list(player_ids),
        deck=create_standard_matching_deck(),
        turn_duration=turn_duration,
    )
    deck = _deck(state, rng)
    deck.shuffle()
    state.player_hands = deck.deal(state.player_order, hand_size)

    # First discard is the first number card in the deck
    first = next((c for c in state.deck if c.kind == ColorClashKind.NUMBER), None)
    if first is not None:
        state.deck.remove(first)
    else:
        first = deck.draw_one()
    if first is None:
        raise DeckExhausted("No card left to start the discard pile")
    state.discard_pile.append(first)
    state.current_color = first.effective_color or rng.choice(list(CardColor))

    if burn_color:
        state.burned_color = rng.choice(list(CardColor))

    state.status = GameStatus.PLAYING
    state.turn_generation = 1
    state.turn_started_at = now or utcnow()

    logger.info(
        f"Color Clash started in room {room_code} with {len(player_ids)} players, "
        f"first card {first}"
    )
    return state


# -------------------------------------------------------------------------
# Turn Actions
# -------------------------------------------------------------------------

def _apply_effect(turn: TurnController, card: ColorClashCard) -> None:
    """Apply a played card's turn-flow effect."""
    if card.kind == ColorClashKind.SKIP:
        turn.skip_next = True
    elif card.kind == ColorClashKind.REVERSE:
        turn.reverse()
        # With two players, reverse acts like skip
        if turn.player_count == 2:
            turn.skip_next = True
    elif card.kind == ColorClashKind.DRAW_TWO:
        turn.add_pending_draw(DRAW_TWO_PENALTY)
        turn.skip_next = True
    elif card.kind == ColorClashKind.WILD_DRAW_FOUR:
        turn.add_pending_draw(WILD_DRAW_FOUR_PENALTY)
        turn.skip_next = True


def _pass_turn_after_play(turn: TurnController) -> None:
    """
    Move the turn on after a successful play.

    A draw obligation hands the turn to the victim with the skip flag still
    set: their turn is forfeit except for drawing, and draw_card() clears
    the flag. Everything else goes through the regular advance().
    """
    if turn.pending_draw > 0 and turn.skip_next:
        turn.current_index = turn.peek_next()
    else:
        turn.advance()


def play_card(
    state: ColorClashState,
    player_id: str,
    card_id: str,
    chosen_color: Optional[CardColor] = None,
    now: Optional[datetime] = None,
) -> ColorClashState:
    """
    Play a card from the current player's hand.

    Wild cards need a chosen color; without one the play is suspended by
    raising WildColorRequired, and the client completes it later.
    A card failing the matching rules is rejected unless it is the player's
    last card.

    Args:
        state: Latest snapshot.
        player_id: Acting player.
        card_id: ID of the card to play.
        chosen_color: Color for a wild card.
        now: Current time.

    Returns:
        Next snapshot.

    Raises:
        GameFinished, InvalidAction, NotYourTurn, CardNotInHand,
        WildColorRequired, InvalidCardPlay.
    """
    _require_turn(state, player_id)

    if state.pending_draw > 0 and state.skip_next_player:
        raise InvalidAction(f"You must draw {state.pending_draw} cards")

    hand = state.hand(player_id)
    card = next((c for c in hand if c.id == card_id), None)
    if card is None:
        raise CardNotInHand("Card not in hand")

    if card.is_wild:
        if chosen_color is None:
            raise WildColorRequired("Choose a color for the wild card")
        to_play = replace(card, selected_color=chosen_color)
    else:
        to_play = replace(card, selected_color=None)

    legal = can_play(to_play, state.top_card, state.current_color, state.burned_color)
    if not legal and len(hand) > 1:
        raise InvalidCardPlay("Cannot play this card - must match color or number")

    new = state.copy()
    new_hand = new.player_hands[player_id]
    new_hand[:] = [c for c in new_hand if c.id != card_id]
    new.discard_pile.append(to_play)
    if to_play.effective_color is not None:
        new.current_color = to_play.effective_color
    new.last_action_player = player_id
    new.last_action_type = PlayerActionType.PLAYED

    turn = new.turn_controller()
    _apply_effect(turn, to_play)

    if not new_hand:
        new.status = GameStatus.FINISHED
        new.winner_id = player_id
        new.apply_turn(turn, new_turn=False)
        new.turn_started_at = None
        logger.info(f"Player {player_id} won Color Clash in room {state.room_code}")
        return new

    _pass_turn_after_play(turn)
    new.apply_turn(turn, now=now)
    return new


def draw_card(
    state: ColorClashState,
    player_id: str,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> ColorClashState:
    """
    Draw for the current player and end their turn.

    If a draw obligation is pending, that many cards are drawn (capped at
    what the deck and reshuffled discards can supply); otherwise one card.
    Drawing always ends the turn.

    Args:
        state: Latest snapshot.
        player_id: Acting player.
        rng: Random source for a reshuffle.
        now: Current time.

    Returns:
        Next snapshot.

    Raises:
        GameFinished, InvalidAction, NotYourTurn.
        DeckExhausted: If a single draw finds no card at all.
    """
    _require_turn(state, player_id)

    new = state.copy()
    deck = _deck(new, rng)
    turn = new.turn_controller()

    owed = turn.take_pending_draw()
    if owed:
        # The forced draw is the whole of this forfeited turn
        turn.skip_next = False
        drawn = deck.draw_up_to(owed)
    else:
        card = deck.draw_one()
        if card is None:
            raise DeckExhausted("No cards left to draw")
        drawn = [card]

    hand = new.player_hands.setdefault(player_id, [])
    hand.extend(drawn)
    if len(hand) != 1:
        new.last_card_declared.pop(player_id, None)

    new.last_action_player = player_id
    new.last_action_type = PlayerActionType.DREW

    turn.advance()
    new.apply_turn(turn, now=now)
    logger.debug(f"Player {player_id} drew {len(drawn)} card(s) in room {state.room_code}")
    return new


def declare_last_card(state: ColorClashState, player_id: str) -> ColorClashState:
    """
    Declare "last card". Allowed only while holding exactly one card.

    Honor system: the flag is shown to other players and nothing checks
    whether anyone forgot to declare.

    Raises:
        GameFinished, InvalidAction.
    """
    if state.status == GameStatus.FINISHED:
        raise GameFinished("The game is over")
    if player_id not in state.player_order:
        raise InvalidAction("Not a player in this game")
    if state.hand_count(player_id) != 1:
        raise InvalidAction("You can only declare with exactly one card left")

    new = state.copy()
    new.last_card_declared[player_id] = True
    return new


def skip_turn(
    state: ColorClashState,
    player_id: str,
    now: Optional[datetime] = None,
) -> ColorClashState:
    """
    Pass without drawing.

    Passing is open to the current player at any time except while a
    forced draw is owed; those cards must be drawn first.

    Raises:
        GameFinished, NotYourTurn.
        InvalidAction: If the player owes a forced draw.
    """
    _require_turn(state, player_id)
    if state.pending_draw > 0 and state.skip_next_player:
        raise InvalidAction(f"You must draw {state.pending_draw} cards")

    new = state.copy()
    new.last_action_player = player_id
    new.last_action_type = PlayerActionType.SKIPPED

    turn = new.turn_controller()
    turn.advance()
    new.apply_turn(turn, now=now)
    return new


def auto_draw(
    state: ColorClashState,
    player_id: str,
    generation: int,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> Optional[ColorClashState]:
    """
    Timer-expiry action: draw on behalf of a player who ran out of time.

    Args:
        state: Latest snapshot.
        player_id: Player whose timer expired.
        generation: Turn generation the timer was started for.
        rng: Random source for a reshuffle.
        now: Current time.

    Returns:
        Next snapshot, or None when the timer is stale (the turn already
        moved on, or the game ended).
    """
    if (
        state.status != GameStatus.PLAYING
        or state.turn_generation != generation
        or state.current_player_id != player_id
    ):
        return None

    try:
        return draw_card(state, player_id, rng=rng, now=now)
    except DeckExhausted:
        logger.info(f"Auto-draw found no cards for {player_id}, passing instead")
        return skip_turn(state, player_id, now=now)
