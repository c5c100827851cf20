"""Strictly sequential queue of agent turn requests."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

from .models import TurnRequest

__all__ = ["TurnQueue", "TurnHandler", "LengthObserver"]

LOGGER = logging.getLogger(__name__)

TurnHandler = Callable[[TurnRequest], Awaitable[None]]
LengthObserver = Callable[[int], None]


class TurnQueue:
    """FIFO queue drained by a single task, one handler call at a time.

    ``clear()`` only drops requests that have not started; a request already
    inside the handler runs to completion and is expected to re-check its own
    validity before committing side effects.
    """

    def __init__(
        self,
        handler: TurnHandler | None = None,
        *,
        length_observer: LengthObserver | None = None,
    ) -> None:
        self._handler = handler
        self._length_observer = length_observer
        self._pending: Deque[TurnRequest] = deque()
        self._drain_task: Optional[asyncio.Task[None]] = None
        self._current: TurnRequest | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def set_handler(self, handler: TurnHandler) -> None:
        self._handler = handler

    def set_length_observer(self, observer: LengthObserver | None) -> None:
        self._length_observer = observer

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_processing(self) -> bool:
        return self._current is not None

    @property
    def current(self) -> TurnRequest | None:
        return self._current

    def pending(self) -> tuple[TurnRequest, ...]:
        return tuple(self._pending)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def enqueue(self, request: TurnRequest) -> None:
        if self._closed:
            raise RuntimeError("TurnQueue is closed")
        self._pending.append(request)
        LOGGER.debug(
            "Enqueued turn for %s (session=%s, pending=%d)",
            request.agent_id,
            request.session_id,
            len(self._pending),
        )
        self._notify()
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    def clear(self) -> None:
        dropped = len(self._pending)
        self._pending.clear()
        if dropped:
            LOGGER.debug("Cleared %d pending turn(s)", dropped)
        self._notify()

    async def join(self) -> None:
        """Wait until the queue is empty and no handler is running."""

        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def aclose(self) -> None:
        self._closed = True
        self.clear()
        task = self._drain_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _drain(self) -> None:
        while self._pending:
            request = self._pending.popleft()
            self._current = request
            self._notify()
            try:
                handler = self._handler
                if handler is None:
                    LOGGER.warning("No turn handler configured; dropping request for %s", request.agent_id)
                else:
                    await handler(request)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Turn handler failed for agent %s", request.agent_id)
            finally:
                self._current = None

    def _notify(self) -> None:
        observer = self._length_observer
        if observer is None:
            return
        try:
            observer(len(self._pending))
        except Exception:  # pragma: no cover - observer bugs must not stall the queue
            LOGGER.exception("Queue length observer raised")
