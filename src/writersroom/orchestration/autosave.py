"""Debounced persistence of the working session."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from ..errors import SessionNotFoundError
from ..storage.sessions import SessionRepository

__all__ = ["DebouncedSessionSaver"]

LOGGER = logging.getLogger(__name__)


class DebouncedSessionSaver:
    """Coalesces session updates and writes the latest one after a quiet period.

    Each ``schedule`` call replaces whatever was pending for that session, so
    the store sees last-write-wins snapshots rather than every intermediate
    state. Writes run one at a time: a snapshot scheduled while an older one is
    being written waits for that write to finish.
    """

    def __init__(self, repository: SessionRepository, delay: float = 1.0) -> None:
        self._repository = repository
        self._delay = max(0.0, float(delay))
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._timer: Optional[asyncio.Task[None]] = None
        self._write_lock = asyncio.Lock()
        self.writes = 0

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def schedule(self, session_id: str, changes: Mapping[str, Any]) -> None:
        self._pending[session_id] = dict(changes)
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._wait_and_write())

    def discard(self, session_id: str) -> None:
        self._pending.pop(session_id, None)

    async def flush(self) -> int:
        """Write everything pending right away; returns the number of sessions written."""

        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
        return await self._write_pending()

    async def aclose(self) -> None:
        await self.flush()

    async def _wait_and_write(self) -> None:
        await asyncio.sleep(self._delay)
        # Past this point the task is writing and must not be cancelled.
        self._timer = None
        await self._write_pending()

    async def _write_pending(self) -> int:
        async with self._write_lock:
            return await self._drain_pending()

    async def _drain_pending(self) -> int:
        written = 0
        loop = asyncio.get_running_loop()
        while self._pending:
            session_id = next(iter(self._pending))
            changes = self._pending.pop(session_id)
            try:
                await loop.run_in_executor(None, self._repository.update_session, session_id, changes)
            except SessionNotFoundError:
                LOGGER.info("Session %s no longer exists; dropping pending save", session_id)
                continue
            except Exception:
                LOGGER.exception("Failed to save session %s", session_id)
                continue
            written += 1
            self.writes += 1
            LOGGER.debug("Saved session %s (%s)", session_id, ", ".join(sorted(changes)))
        return written
