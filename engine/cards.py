"""
Card model for the online card games.

Two card families live here, both plain value objects with pure helpers:

Color Clash (UNO-style matching game):
    - Number cards 0-9 in four colors
    - Action cards: Skip, Reverse, Draw Two (colored)
    - Wild and Wild Draw Four (color chosen when played)

Flip 21 (blackjack-style elimination game):
    - Standard 52-card deck, no jokers
    - Ace counts 1 or 11, face cards count 10
    - Only revealed (face-up) cards count towards a hand's value

Each card carries a stable string id so hands, decks and discard piles can
be compared across snapshots written by different clients.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from constants import (
    ACE_HIGH_VALUE,
    ACE_LOW_VALUE,
    ACTION_CARD_COPIES,
    BUST_LIMIT,
    FACE_CARD_VALUE,
    NUMBER_CARD_COPIES,
    WILD_CARD_COUNT,
    WILD_DRAW_FOUR_COUNT,
    ZERO_CARDS_PER_COLOR,
)


def new_card_id() -> str:
    """Generate a stable unique card identifier."""
    return str(uuid.uuid4())


# =============================================================================
# Color Clash
# =============================================================================

class CardColor(str, Enum):
    """The four Color Clash colors."""

    RED = "red"
    BLUE = "blue"
    YELLOW = "yellow"
    GREEN = "green"


class ColorClashKind(str, Enum):
    """
    Kind of a Color Clash card.

    NUMBER cards carry a color and a number. SKIP, REVERSE and DRAW_TWO
    carry only a color. WILD and WILD_DRAW_FOUR have no color until played.
    """

    NUMBER = "number"
    SKIP = "skip"
    REVERSE = "reverse"
    DRAW_TWO = "drawTwo"
    WILD = "wild"
    WILD_DRAW_FOUR = "wildDrawFour"

    @property
    def is_wild(self) -> bool:
        return self in (ColorClashKind.WILD, ColorClashKind.WILD_DRAW_FOUR)


ACTION_KINDS = (ColorClashKind.SKIP, ColorClashKind.REVERSE, ColorClashKind.DRAW_TWO)


@dataclass
class ColorClashCard:
    """
    A Color Clash card.

    Attributes:
        kind: Number, action or wild kind.
        color: Printed color (None for wild kinds).
        number: 0-9 for number cards, None otherwise.
        selected_color: Color chosen by the player when a wild is played.
        id: Stable unique identifier.
    """

    kind: ColorClashKind
    color: Optional[CardColor] = None
    number: Optional[int] = None
    selected_color: Optional[CardColor] = None
    id: str = field(default_factory=new_card_id)

    @property
    def is_wild(self) -> bool:
        return self.kind.is_wild

    @property
    def effective_color(self) -> Optional[CardColor]:
        """Color used for matching: the chosen color wins over the printed one."""
        return self.selected_color or self.color

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "color": self.color.value if self.color else None,
            "number": self.number,
            "selected_color": self.selected_color.value if self.selected_color else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ColorClashCard":
        """Deserialize card from dictionary."""
        return cls(
            id=d["id"],
            kind=ColorClashKind(d["kind"]),
            color=CardColor(d["color"]) if d.get("color") else None,
            number=d.get("number"),
            selected_color=CardColor(d["selected_color"]) if d.get("selected_color") else None,
        )

    def __str__(self) -> str:
        if self.kind == ColorClashKind.NUMBER:
            return f"{self.color.value} {self.number}"
        if self.is_wild:
            chosen = f" ({self.selected_color.value})" if self.selected_color else ""
            return f"{self.kind.value}{chosen}"
        return f"{self.color.value} {self.kind.value}"


def create_standard_matching_deck() -> list[ColorClashCard]:
    """
    Create the standard 108-card Color Clash deck (unshuffled).

    Per color: one 0, two each of 1-9, two of each action card.
    Plus four Wild and four Wild Draw Four.

    Returns:
        List of freshly-identified cards.
    """
    deck: list[ColorClashCard] = []

    for color in CardColor:
        for _ in range(ZERO_CARDS_PER_COLOR):
            deck.append(ColorClashCard(ColorClashKind.NUMBER, color=color, number=0))

        for number in range(1, 10):
            for _ in range(NUMBER_CARD_COPIES):
                deck.append(ColorClashCard(ColorClashKind.NUMBER, color=color, number=number))

        for _ in range(ACTION_CARD_COPIES):
            for kind in ACTION_KINDS:
                deck.append(ColorClashCard(kind, color=color))

    for _ in range(WILD_CARD_COUNT):
        deck.append(ColorClashCard(ColorClashKind.WILD))
    for _ in range(WILD_DRAW_FOUR_COUNT):
        deck.append(ColorClashCard(ColorClashKind.WILD_DRAW_FOUR))

    return deck


def can_play(
    card: ColorClashCard,
    on_top_of: Optional[ColorClashCard],
    current_color: CardColor,
    burned_color: Optional[CardColor] = None,
) -> bool:
    """
    Check whether a card may be played on the current discard.

    Rules:
        - Wild and Wild Draw Four are always playable (color chosen afterwards)
        - Burned color (house rule): only action cards of that color may be played
        - Otherwise the card must match the current color, or match the top
          card's number (number cards) or kind (action cards)

    Args:
        card: Card the player wants to play.
        on_top_of: Top card of the discard pile (None if the pile is empty).
        current_color: Color currently in force.
        burned_color: Optional burned color for the room.

    Returns:
        True if the play is legal.
    """
    if card.is_wild:
        return True

    if burned_color is not None and card.color == burned_color:
        return card.kind != ColorClashKind.NUMBER

    if card.color == current_color:
        return True

    if on_top_of is None:
        return False

    if card.kind == ColorClashKind.NUMBER:
        return on_top_of.kind == ColorClashKind.NUMBER and card.number == on_top_of.number

    return card.kind == on_top_of.kind


# =============================================================================
# Flip 21
# =============================================================================

class Suit(str, Enum):
    """Card suits for a standard deck."""

    SPADES = "spades"
    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"


class Rank(str, Enum):
    """Card ranks, ace low in declaration order."""

    ACE = "ace"
    TWO = "two"
    THREE = "three"
    FOUR = "four"
    FIVE = "five"
    SIX = "six"
    SEVEN = "seven"
    EIGHT = "eight"
    NINE = "nine"
    TEN = "ten"
    JACK = "jack"
    QUEEN = "queen"
    KING = "king"


# Base values: ace counted low here, promoted to 11 in hand_value()
RANK_VALUES: dict[Rank, int] = {
    Rank.ACE: ACE_LOW_VALUE,
    Rank.TWO: 2,
    Rank.THREE: 3,
    Rank.FOUR: 4,
    Rank.FIVE: 5,
    Rank.SIX: 6,
    Rank.SEVEN: 7,
    Rank.EIGHT: 8,
    Rank.NINE: 9,
    Rank.TEN: FACE_CARD_VALUE,
    Rank.JACK: FACE_CARD_VALUE,
    Rank.QUEEN: FACE_CARD_VALUE,
    Rank.KING: FACE_CARD_VALUE,
}

RANK_DISPLAY: dict[Rank, str] = {
    Rank.ACE: "A",
    Rank.JACK: "J",
    Rank.QUEEN: "Q",
    Rank.KING: "K",
}


@dataclass
class Flip21Card:
    """
    A Flip 21 playing card.

    Attributes:
        rank: The card's rank.
        suit: The card's suit.
        is_revealed: Whether the card is face-up.
        id: Stable unique identifier.
    """

    rank: Rank
    suit: Suit
    is_revealed: bool = False
    id: str = field(default_factory=new_card_id)

    def value(self) -> int:
        """Get base point value (ace counted as 1)."""
        return RANK_VALUES[self.rank]

    @property
    def display_rank(self) -> str:
        return RANK_DISPLAY.get(self.rank, str(RANK_VALUES[self.rank]))

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "rank": self.rank.value,
            "suit": self.suit.value,
            "is_revealed": self.is_revealed,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Flip21Card":
        """Deserialize card from dictionary."""
        return cls(
            id=d["id"],
            rank=Rank(d["rank"]),
            suit=Suit(d["suit"]),
            is_revealed=d.get("is_revealed", False),
        )


def create_standard_elimination_deck() -> list[Flip21Card]:
    """Create a standard 52-card deck, all cards face-down (unshuffled)."""
    return [Flip21Card(rank, suit) for suit in Suit for rank in Rank]


def hand_value(cards: Iterable[Flip21Card]) -> int:
    """
    Calculate the best value of a hand.

    Only revealed cards count. Aces are assigned 1 or 11 to maximize the
    total without exceeding 21. When even counting every ace as 1 exceeds
    21 the hand is busted and aces are reported as 11.

    Args:
        cards: Hand to evaluate.

    Returns:
        Hand total.
    """
    total = 0
    aces = 0
    for card in cards:
        if not card.is_revealed:
            continue
        if card.rank == Rank.ACE:
            aces += 1
        else:
            total += card.value()

    low = total + aces * ACE_LOW_VALUE
    if low > BUST_LIMIT:
        return total + aces * ACE_HIGH_VALUE

    # At most one ace can count high without busting
    promoted = low + (ACE_HIGH_VALUE - ACE_LOW_VALUE)
    if aces and promoted <= BUST_LIMIT:
        return promoted
    return low


def is_busted(cards: Iterable[Flip21Card]) -> bool:
    """Check if a hand's value is over 21."""
    return hand_value(cards) > BUST_LIMIT


def is_blackjack(cards: list[Flip21Card]) -> bool:
    """Check if a hand is exactly two cards totaling 21."""
    return len(cards) == 2 and hand_value(cards) == BUST_LIMIT
