"""
Turn countdown timers.

The scheduler owns one cancellable asyncio task per room. Each timer is
keyed by (room, player, turn generation); the expiry callback receives that
key so the action it triggers can check the generation against the latest
snapshot and do nothing when the turn already moved on.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerKey:
    """Identity of one turn countdown."""

    room_code: str
    player_id: str
    generation: int


ExpiryCallback = Callable[[TimerKey], Awaitable[None]]


@dataclass
class _RunningTimer:
    key: TimerKey
    task: asyncio.Task
    deadline: float


class TurnTimerScheduler:
    """
    Runs at most one turn countdown per room.

    Starting a timer for a room replaces (cancels) the room's previous one,
    so turn changes simply start the next timer.
    """

    def __init__(self) -> None:
        self._timers: dict[str, _RunningTimer] = {}

    def start(self, key: TimerKey, duration: float, on_expire: ExpiryCallback) -> None:
        """
        Start a countdown for a turn. Must be called from a running event loop.

        Args:
            key: Turn identity.
            duration: Seconds until expiry.
            on_expire: Coroutine function called with the key on expiry.
        """
        self.cancel_room(key.room_code)

        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(key, duration, on_expire))
        self._timers[key.room_code] = _RunningTimer(key, task, loop.time() + duration)
        logger.debug(
            f"Turn timer started for {key.player_id} in room {key.room_code} "
            f"(generation {key.generation}, {duration}s)"
        )

    def cancel(self, key: TimerKey) -> bool:
        """
        Cancel the countdown for exactly this turn.

        Returns:
            True if a matching timer was running.
        """
        running = self._timers.get(key.room_code)
        if running is None or running.key != key:
            return False
        return self.cancel_room(key.room_code)

    def cancel_room(self, room_code: str) -> bool:
        """
        Cancel whatever countdown is running for a room.

        Returns:
            True if a timer was cancelled.
        """
        running = self._timers.pop(room_code, None)
        if running is None:
            return False
        running.task.cancel()
        return True

    async def cancel_all(self) -> None:
        """Cancel every countdown and wait for the tasks to finish."""
        running = list(self._timers.values())
        self._timers.clear()
        for timer in running:
            timer.task.cancel()
        for timer in running:
            try:
                await timer.task
            except asyncio.CancelledError:
                pass

    def active_key(self, room_code: str) -> Optional[TimerKey]:
        """Key of the countdown running for a room, if any."""
        running = self._timers.get(room_code)
        return running.key if running else None

    def remaining(self, key: TimerKey) -> Optional[float]:
        """
        Seconds left on a countdown.

        Returns:
            Remaining seconds (never negative), or None if that timer is not
            running.
        """
        running = self._timers.get(key.room_code)
        if running is None or running.key != key:
            return None
        return max(0.0, running.deadline - asyncio.get_running_loop().time())

    async def _run(self, key: TimerKey, duration: float, on_expire: ExpiryCallback) -> None:
        await asyncio.sleep(duration)

        running = self._timers.get(key.room_code)
        if running is not None and running.key == key:
            del self._timers[key.room_code]

        logger.debug(f"Turn timer expired for {key.player_id} in room {key.room_code}")
        try:
            await on_expire(key)
        except Exception as e:
            logger.error(f"Turn timer callback failed for {key}: {e}", exc_info=True)
