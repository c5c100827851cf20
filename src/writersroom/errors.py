"""Exception hierarchy shared across the writing room."""

from __future__ import annotations


class WritersRoomError(Exception):
    """Base class for errors raised by the writing room."""


class RosterError(WritersRoomError, ValueError):
    """Raised when an agent roster or persona catalog is invalid."""


class SessionNotFoundError(WritersRoomError, KeyError):
    """Raised when a session or document version id is unknown."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


class DiffBatchTimeout(WritersRoomError, TimeoutError):
    """Raised when a fuzzy diff batch exceeds its time budget."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Diff computation timed out after {timeout:g}s")
        self.timeout = timeout


class ModelAdapterError(WritersRoomError, RuntimeError):
    """Raised by model adapters when a request cannot be completed."""

    def __init__(self, message: str, *, auth_failure: bool = False) -> None:
        super().__init__(message)
        self.auth_failure = auth_failure


__all__ = [
    "WritersRoomError",
    "RosterError",
    "SessionNotFoundError",
    "DiffBatchTimeout",
    "ModelAdapterError",
]
