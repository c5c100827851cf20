"""Cancellable countdown used while the conversation waits for the user."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

__all__ = ["UserTurnTimer"]

LOGGER = logging.getLogger(__name__)

TimerCallback = Callable[[], "Awaitable[Any] | Any"]


class UserTurnTimer:
    """Runs ``callback`` once ``delay`` seconds pass without a cancel or restart."""

    def __init__(self, callback: TimerCallback) -> None:
        self._callback = callback
        self._task: Optional[asyncio.Task[None]] = None
        self._delay = 0.0

    @property
    def is_armed(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def delay(self) -> float:
        return self._delay

    def arm(self, delay: float) -> None:
        self.cancel()
        self._delay = max(0.0, float(delay))
        self._task = asyncio.get_running_loop().create_task(self._countdown(self._delay))
        LOGGER.debug("User turn timer armed for %.1fs", self._delay)

    def restart(self) -> bool:
        """Start the countdown over; returns ``False`` when the timer is not armed."""

        if not self.is_armed:
            return False
        self.arm(self._delay)
        return True

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _countdown(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach first so the callback may re-arm or cancel freely.
        self._task = None
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.exception("User turn timer callback failed")
