from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class IdleTimer:
    """One cancellable countdown that runs ``callback`` when it expires."""

    def __init__(self, callback: Callable[[], Awaitable[None]]) -> None:
        self._callback = callback
        self._task: asyncio.Task | None = None

    @property
    def armed(self) -> bool:
        return self._task is not None

    def arm(self, delay: float) -> None:
        self.disarm()
        self._task = asyncio.create_task(self._run(delay))

    def disarm(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        self._task = None

    async def _run(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Cleared before the callback so a disarm() from inside it is a no-op.
        self._task = None
        try:
            await self._callback()
        except Exception:
            logger.exception("Idle timer callback failed")
