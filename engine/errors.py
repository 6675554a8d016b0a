"""
Error taxonomy for the online game engine.

Game errors are raised by the pure state transitions in color_clash.py and
flip21.py. A raised GameError always means no new snapshot was produced, so
callers never write partial state. Transport errors come from the shared
snapshot stores.

Every error carries a machine-readable code plus a human-readable message
that the UI layer can show directly.
"""

# Error codes
NOT_YOUR_TURN = "NOT_YOUR_TURN"
INVALID_CARD_PLAY = "INVALID_CARD_PLAY"
CARD_NOT_IN_HAND = "CARD_NOT_IN_HAND"
DECK_EXHAUSTED = "DECK_EXHAUSTED"
WILD_COLOR_REQUIRED = "WILD_COLOR_REQUIRED"
INVALID_ACTION = "INVALID_ACTION"
GAME_FINISHED = "GAME_FINISHED"
TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
STALE_SNAPSHOT = "STALE_SNAPSHOT"


class GameError(Exception):
    """Base exception for rule violations and rejected actions."""

    code = INVALID_ACTION

    def __init__(self, message: str, code: str = ""):
        self.code = code or self.code
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class NotYourTurn(GameError):
    """Action attempted by a player who does not hold the turn."""

    code = NOT_YOUR_TURN


class InvalidCardPlay(GameError):
    """Card does not match the current color, number or kind."""

    code = INVALID_CARD_PLAY


class CardNotInHand(GameError):
    """Card id is not in the acting player's hand."""

    code = CARD_NOT_IN_HAND


class DeckExhausted(GameError):
    """No card can be drawn, even after reshuffling the discard pile."""

    code = DECK_EXHAUSTED


class WildColorRequired(GameError):
    """A wild card was played without choosing a color yet."""

    code = WILD_COLOR_REQUIRED


class InvalidAction(GameError):
    """Action not allowed in the current phase or state."""

    code = INVALID_ACTION


class GameFinished(GameError):
    """The match is over; no further mutation is accepted."""

    code = GAME_FINISHED


class TransportFailure(Exception):
    """Reading from or writing to the shared store failed."""

    code = TRANSPORT_FAILURE

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class ConcurrencyError(TransportFailure):
    """Raised when the optimistic concurrency (version) check fails."""

    code = STALE_SNAPSHOT
