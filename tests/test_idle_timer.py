"""
Unit tests for IdleTimer
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from core.idle_timer import IdleTimer


class TestIdleTimer:
    @pytest.mark.asyncio
    async def test_fires_after_delay(self):
        callback = AsyncMock()
        timer = IdleTimer(callback)

        timer.arm(0.01)
        assert timer.armed
        await asyncio.sleep(0.05)

        callback.assert_awaited_once()
        assert not timer.armed

    @pytest.mark.asyncio
    async def test_disarm_cancels(self):
        callback = AsyncMock()
        timer = IdleTimer(callback)

        timer.arm(0.01)
        timer.disarm()
        await asyncio.sleep(0.05)

        callback.assert_not_awaited()
        assert not timer.armed

    @pytest.mark.asyncio
    async def test_disarm_is_idempotent(self):
        timer = IdleTimer(AsyncMock())

        timer.disarm()
        timer.disarm()

        assert not timer.armed

    @pytest.mark.asyncio
    async def test_rearm_replaces_previous(self):
        callback = AsyncMock()
        timer = IdleTimer(callback)

        timer.arm(0.01)
        timer.arm(0.2)
        await asyncio.sleep(0.05)

        callback.assert_not_awaited()
        assert timer.armed
        timer.disarm()

    @pytest.mark.asyncio
    async def test_callback_may_disarm_itself(self):
        timer = None

        async def callback():
            timer.disarm()

        timer = IdleTimer(callback)
        timer.arm(0)
        await asyncio.sleep(0.01)

        assert not timer.armed

    @pytest.mark.asyncio
    async def test_callback_errors_are_logged(self, caplog):
        timer = IdleTimer(AsyncMock(side_effect=RuntimeError("boom")))

        timer.arm(0)
        await asyncio.sleep(0.01)

        assert "Idle timer callback failed" in caplog.text
