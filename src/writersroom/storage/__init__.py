"""Session persistence backends."""

from .sessions import InMemorySessionStore, SessionRepository, SqliteSessionStore

__all__ = ["InMemorySessionStore", "SessionRepository", "SqliteSessionStore"]
