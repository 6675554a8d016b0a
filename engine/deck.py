"""
Deck lifecycle for the online card games.

A Deck wraps the draw pile and discard pile lists of a game snapshot and
mutates them in place, so the state machines work on a copy of the snapshot
and hand the piles to a Deck for shuffling, dealing and drawing.

Conventions:
    - The draw pile is drawn from the front (index 0)
    - The top of the discard pile is the last element
    - Reshuffling keeps the top discard card in place as the visible card
      and shuffles the rest back into the draw pile
"""

import logging
import random
from typing import Callable, Generic, Optional, TypeVar

from errors import DeckExhausted

logger = logging.getLogger(__name__)

C = TypeVar("C")


def shuffle(cards: list, rng: Optional[random.Random] = None) -> None:
    """
    Shuffle cards in place with a uniform random permutation.

    Args:
        cards: Cards to shuffle.
        rng: Random source (local entropy by default).
    """
    (rng or random.Random()).shuffle(cards)


class Deck(Generic[C]):
    """
    A draw pile and discard pile that can be shuffled, dealt and drawn from.

    Randomness is local: each client shuffles with its own entropy and the
    result is written as part of the next snapshot, so shuffles never need
    to be reproducible across clients.
    """

    def __init__(
        self,
        cards: list[C],
        discard: Optional[list[C]] = None,
        rng: Optional[random.Random] = None,
        reset_card: Optional[Callable[[C], None]] = None,
    ) -> None:
        """
        Initialize a deck over existing piles.

        Args:
            cards: Draw pile (mutated in place).
            discard: Discard pile (mutated in place).
            rng: Random source for shuffles.
            reset_card: Called on each card returned to the draw pile by a
                reshuffle (turn face-down, clear chosen wild color, ...).
        """
        self.cards = cards
        self.discard = discard if discard is not None else []
        self.rng = rng or random.Random()
        self.reset_card = reset_card

    def shuffle(self) -> None:
        """Randomize the order of the draw pile."""
        self.rng.shuffle(self.cards)

    def cards_remaining(self) -> int:
        """Return the number of cards left in the draw pile."""
        return len(self.cards)

    def available(self, keep_top: bool = True) -> int:
        """
        Count cards obtainable by drawing, including a reshuffle.

        Args:
            keep_top: Whether a reshuffle would keep the top discard card.
        """
        reshufflable = len(self.discard) - 1 if keep_top else len(self.discard)
        return len(self.cards) + max(0, reshufflable)

    def deal(self, player_ids: list[str], count: int) -> dict[str, list[C]]:
        """
        Deal cards to each player, one at a time round-robin.

        Args:
            player_ids: Players to deal to, in seat order.
            count: Cards per player.

        Returns:
            Mapping of player ID to dealt cards.

        Raises:
            DeckExhausted: If the draw pile cannot cover the deal.
        """
        needed = len(player_ids) * count
        if needed > len(self.cards):
            raise DeckExhausted(
                f"Cannot deal {count} cards to {len(player_ids)} players "
                f"from {len(self.cards)} cards"
            )

        hands: dict[str, list[C]] = {pid: [] for pid in player_ids}
        for _ in range(count):
            for pid in player_ids:
                hands[pid].append(self.cards.pop(0))
        return hands

    def reshuffle(self, keep_top: bool = True) -> int:
        """
        Move the discard pile back into the draw pile and shuffle.

        Args:
            keep_top: Keep the top discard card as the sole discard and
                visible card. Pass False when another visible card (e.g.
                the dealer's face-up card) anchors the table.

        Returns:
            Number of cards moved into the draw pile.
        """
        if keep_top:
            if len(self.discard) <= 1:
                return 0
            to_shuffle = self.discard[:-1]
            del self.discard[:-1]
        else:
            to_shuffle = self.discard[:]
            self.discard.clear()

        if not to_shuffle:
            return 0

        if self.reset_card:
            for card in to_shuffle:
                self.reset_card(card)

        self.cards.extend(to_shuffle)
        self.shuffle()
        logger.debug(f"Reshuffled {len(to_shuffle)} discards into the deck")
        return len(to_shuffle)

    def draw_one(self, keep_top: bool = True) -> Optional[C]:
        """
        Draw the front card, reshuffling the discard pile if the deck is empty.

        Args:
            keep_top: Passed to reshuffle().

        Returns:
            The drawn card, or None if no card is available anywhere.
        """
        if not self.cards:
            self.reshuffle(keep_top=keep_top)
        if not self.cards:
            return None
        return self.cards.pop(0)

    def draw_up_to(self, count: int, keep_top: bool = True) -> list[C]:
        """
        Draw cards one at a time until count is reached or none remain.

        A multi-card obligation larger than every remaining card is capped
        at what is available.

        Args:
            count: Cards wanted.
            keep_top: Passed to reshuffle().

        Returns:
            Drawn cards (possibly fewer than count).
        """
        drawn: list[C] = []
        while len(drawn) < count:
            card = self.draw_one(keep_top=keep_top)
            if card is None:
                logger.info(f"Deck exhausted after drawing {len(drawn)} of {count} cards")
                break
            drawn.append(card)
        return drawn
