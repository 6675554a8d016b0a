"""
Turn controller shared by both online games.

Tracks whose turn it is, the direction of play, and pending skip/draw
obligations. Skips are two-step: a skipped advance moves past exactly one
player and lands on the one after.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def format_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a timestamp for snapshot storage."""
    return value.isoformat() if value else None


def parse_time(value: Optional[str]) -> Optional[datetime]:
    """Deserialize a stored timestamp."""
    return datetime.fromisoformat(value) if value else None


def turn_deadline(started_at: Optional[datetime], duration: float) -> Optional[datetime]:
    """When the current turn's countdown runs out (None if no turn is running)."""
    if started_at is None:
        return None
    return started_at + timedelta(seconds=duration)


def seconds_remaining(
    started_at: Optional[datetime],
    duration: float,
    now: Optional[datetime] = None,
) -> float:
    """Seconds left on the current turn, never negative (0 when no turn is running)."""
    deadline = turn_deadline(started_at, duration)
    if deadline is None:
        return 0.0
    return max(0.0, (deadline - (now or utcnow())).total_seconds())


@dataclass
class TurnController:
    """
    Turn order state for a table of players.

    Attributes:
        player_count: Number of seats in turn order.
        current_index: Seat index of the current player.
        direction: +1 (clockwise) or -1 (counter-clockwise).
        skip_next: Whether the next advance forfeits one player's turn.
        pending_draw: Accumulated forced-draw obligation.
    """

    player_count: int
    current_index: int = 0
    direction: int = 1
    skip_next: bool = False
    pending_draw: int = 0

    def __post_init__(self) -> None:
        if self.player_count <= 0:
            raise ValueError("TurnController needs at least one player")
        if self.direction not in (1, -1):
            raise ValueError(f"direction must be +1 or -1, got {self.direction}")
        self.current_index %= self.player_count

    def peek_next(self, steps: int = 1) -> int:
        """Index reached by moving steps seats in the current direction."""
        return (self.current_index + steps * self.direction) % self.player_count

    def advance(self) -> int:
        """
        Move to the next player.

        If skip_next is set it is cleared and the turn moves two seats,
        otherwise one.

        Returns:
            The new current index.
        """
        steps = 1
        if self.skip_next:
            self.skip_next = False
            steps = 2
        self.current_index = self.peek_next(steps)
        return self.current_index

    def reverse(self) -> None:
        """Flip the direction of play."""
        self.direction = -self.direction

    def add_pending_draw(self, count: int) -> None:
        """Stack a forced-draw obligation onto the next player."""
        self.pending_draw += count

    def take_pending_draw(self) -> int:
        """Consume and return the pending draw obligation."""
        count = self.pending_draw
        self.pending_draw = 0
        return count

    def advance_until(self, eligible: Callable[[int], bool]) -> bool:
        """
        Advance one seat at a time until an eligible seat is found.

        Checks at most one full lap; the current seat is only reconsidered
        after every other seat was rejected.

        Args:
            eligible: Predicate on a seat index.

        Returns:
            True if an eligible seat became current, False if none exists
            (the index is left where it started).
        """
        start = self.current_index
        for _ in range(self.player_count):
            self.current_index = self.peek_next()
            if eligible(self.current_index):
                return True
        self.current_index = start
        return False
