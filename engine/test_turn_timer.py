"""
Tests for the turn timer scheduler.

Run with: pytest test_turn_timer.py -v
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from turn_timer import TimerKey, TurnTimerScheduler


class TestTurnTimerScheduler:

    @pytest.mark.asyncio
    async def test_expiry_calls_back_with_key(self):
        timers = TurnTimerScheduler()
        on_expire = AsyncMock()
        key = TimerKey("ABCD", "alice", 3)

        timers.start(key, 0.01, on_expire)
        await asyncio.sleep(0.05)

        on_expire.assert_awaited_once_with(key)
        assert timers.active_key("ABCD") is None

    @pytest.mark.asyncio
    async def test_cancel_prevents_expiry(self):
        timers = TurnTimerScheduler()
        on_expire = AsyncMock()
        key = TimerKey("ABCD", "alice", 1)

        timers.start(key, 0.02, on_expire)
        assert timers.cancel(key) is True
        await asyncio.sleep(0.05)

        on_expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_other_generation_is_ignored(self):
        timers = TurnTimerScheduler()
        on_expire = AsyncMock()

        timers.start(TimerKey("ABCD", "alice", 2), 10, on_expire)
        assert timers.cancel(TimerKey("ABCD", "alice", 1)) is False
        assert timers.active_key("ABCD") == TimerKey("ABCD", "alice", 2)

        await timers.cancel_all()

    @pytest.mark.asyncio
    async def test_new_timer_replaces_room_timer(self):
        timers = TurnTimerScheduler()
        first = AsyncMock()
        second = AsyncMock()

        timers.start(TimerKey("ABCD", "alice", 1), 0.02, first)
        timers.start(TimerKey("ABCD", "bob", 2), 0.02, second)
        await asyncio.sleep(0.06)

        first.assert_not_awaited()
        second.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rooms_are_independent(self):
        timers = TurnTimerScheduler()
        on_expire = AsyncMock()

        timers.start(TimerKey("ABCD", "alice", 1), 0.01, on_expire)
        timers.start(TimerKey("WXYZ", "bob", 1), 0.01, on_expire)
        await asyncio.sleep(0.05)

        assert on_expire.await_count == 2

    @pytest.mark.asyncio
    async def test_remaining(self):
        timers = TurnTimerScheduler()
        key = TimerKey("ABCD", "alice", 1)
        timers.start(key, 30, AsyncMock())

        remaining = timers.remaining(key)
        assert 29 < remaining <= 30
        assert timers.remaining(TimerKey("ABCD", "alice", 2)) is None

        await timers.cancel_all()
        assert timers.remaining(key) is None

    @pytest.mark.asyncio
    async def test_callback_error_does_not_propagate(self):
        timers = TurnTimerScheduler()
        on_expire = AsyncMock(side_effect=RuntimeError("boom"))

        timers.start(TimerKey("ABCD", "alice", 1), 0.01, on_expire)
        await asyncio.sleep(0.05)

        on_expire.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_callback_can_start_next_timer(self):
        timers = TurnTimerScheduler()
        fired = []

        async def on_expire(key: TimerKey) -> None:
            fired.append(key)
            if key.generation == 1:
                timers.start(TimerKey("ABCD", "bob", 2), 0.01, on_expire)

        timers.start(TimerKey("ABCD", "alice", 1), 0.01, on_expire)
        await asyncio.sleep(0.08)

        assert [k.generation for k in fired] == [1, 2]
