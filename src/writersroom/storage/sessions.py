"""Session persistence: SQLite-backed and in-memory stores."""

from __future__ import annotations

import copy
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from ..conversation.models import ConversationTurn, DocumentVersion, Session, new_id
from ..errors import SessionNotFoundError

__all__ = [
    "DEFAULT_SESSION_TITLE",
    "SESSION_FIELDS",
    "SessionRepository",
    "SqliteSessionStore",
    "InMemorySessionStore",
    "default_database_path",
]

LOGGER = logging.getLogger(__name__)
DEFAULT_SESSION_TITLE = "Untitled session"
SESSION_FIELDS = frozenset({"title", "document_content", "conversation", "active_agent_ids", "metadata"})


def default_database_path() -> Path:
    return Path.home() / ".writersroom" / "sessions.sqlite"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@runtime_checkable
class SessionRepository(Protocol):
    """Key-addressed session store with last-write-wins updates."""

    def create_session(
        self,
        title: str | None = None,
        *,
        active_agent_ids: Sequence[str] = (),
        document_content: str = "",
    ) -> Session:
        ...

    def get_session(self, session_id: str) -> Session:
        ...

    def get_all_sessions(self) -> list[Session]:
        ...

    def update_session(self, session_id: str, changes: Mapping[str, Any]) -> Session:
        ...

    def delete_session(self, session_id: str) -> None:
        ...

    def save_document_version(
        self,
        session_id: str,
        content: str,
        edited_by: str,
        action: str = "manual",
        details: Mapping[str, Any] | None = None,
    ) -> DocumentVersion:
        ...

    def get_document_versions(self, session_id: str) -> list[DocumentVersion]:
        ...

    def restore_document_version(self, session_id: str, version_id: str) -> Session:
        ...


def _check_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = set(changes) - SESSION_FIELDS
    if unknown:
        raise ValueError(f"Unknown session fields: {sorted(unknown)}")
    return dict(changes)


def _apply_changes(session: Session, changes: Mapping[str, Any]) -> Session:
    for key, value in _check_changes(changes).items():
        if key == "conversation":
            value = [
                turn if isinstance(turn, ConversationTurn) else ConversationTurn.from_dict(turn)
                for turn in value
                if not (isinstance(turn, ConversationTurn) and turn.is_provisional)
            ]
        elif key == "active_agent_ids":
            value = [str(item) for item in value]
        elif key == "metadata":
            value = dict(value)
        setattr(session, key, value)
    session.updated_at = _utcnow()
    return session


# ----------------------------------------------------------------------
# In-memory
# ----------------------------------------------------------------------


class InMemorySessionStore:
    """Dictionary-backed :class:`SessionRepository` for tests and headless runs."""

    def __init__(self, sessions: Iterable[Session] | None = None) -> None:
        self._lock = RLock()
        self._sessions: Dict[str, Session] = {}
        self._versions: Dict[str, list[DocumentVersion]] = {}
        for session in sessions or ():
            self._sessions[session.id] = copy.deepcopy(session)

    def create_session(
        self,
        title: str | None = None,
        *,
        active_agent_ids: Sequence[str] = (),
        document_content: str = "",
    ) -> Session:
        session = Session(
            id=new_id(),
            title=title or DEFAULT_SESSION_TITLE,
            document_content=document_content,
            active_agent_ids=list(active_agent_ids),
        )
        with self._lock:
            self._sessions[session.id] = copy.deepcopy(session)
        return session

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            return copy.deepcopy(session)

    def get_all_sessions(self) -> list[Session]:
        with self._lock:
            sessions = [copy.deepcopy(item) for item in self._sessions.values()]
        return sorted(sessions, key=lambda item: item.updated_at, reverse=True)

    def update_session(self, session_id: str, changes: Mapping[str, Any]) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            _apply_changes(session, changes)
            return copy.deepcopy(session)

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)
            self._versions.pop(session_id, None)

    def save_document_version(
        self,
        session_id: str,
        content: str,
        edited_by: str,
        action: str = "manual",
        details: Mapping[str, Any] | None = None,
    ) -> DocumentVersion:
        version = DocumentVersion(
            session_id=session_id,
            content=content,
            edited_by=edited_by,
            action=action,
            details=dict(details or {}),
        )
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFoundError(session_id)
            self._versions.setdefault(session_id, []).append(version)
        return version

    def get_document_versions(self, session_id: str) -> list[DocumentVersion]:
        with self._lock:
            versions = list(self._versions.get(session_id, ()))
        versions.reverse()
        return versions

    def restore_document_version(self, session_id: str, version_id: str) -> Session:
        with self._lock:
            for version in self._versions.get(session_id, ()):
                if version.id == version_id:
                    break
            else:
                raise SessionNotFoundError(version_id)
            session = self.update_session(session_id, {"document_content": version.content})
            self.save_document_version(
                session_id, version.content, "user", "manual", {"restored_from": version_id}
            )
            return session


# ----------------------------------------------------------------------
# SQLite
# ----------------------------------------------------------------------


class SqliteSessionStore:
    """SQLite-backed :class:`SessionRepository`."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._path = Path(db_path) if db_path is not None else default_database_path()
        if str(self._path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._lock = RLock()
        self._create_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _create_schema(self) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS sessions (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        document_content TEXT NOT NULL DEFAULT '',
                        conversation TEXT NOT NULL DEFAULT '[]',
                        active_agent_ids TEXT NOT NULL DEFAULT '[]',
                        metadata TEXT NOT NULL DEFAULT '{}',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS document_versions (
                        id TEXT PRIMARY KEY,
                        session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
                        content TEXT NOT NULL,
                        edited_by TEXT NOT NULL,
                        action TEXT NOT NULL,
                        details TEXT NOT NULL DEFAULT '{}',
                        created_at TEXT NOT NULL
                    )
                    """
                )
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_document_versions_session "
                    "ON document_versions(session_id, created_at)"
                )

    def create_session(
        self,
        title: str | None = None,
        *,
        active_agent_ids: Sequence[str] = (),
        document_content: str = "",
    ) -> Session:
        session = Session(
            id=new_id(),
            title=title or DEFAULT_SESSION_TITLE,
            document_content=document_content,
            active_agent_ids=list(active_agent_ids),
        )
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO sessions (
                        id, title, document_content, conversation, active_agent_ids,
                        metadata, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    self._session_to_tuple(session),
                )
        LOGGER.debug("Created session %s", session.id)
        return session

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            row = self._conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            raise SessionNotFoundError(session_id)
        return self._row_to_session(row)

    def get_all_sessions(self) -> list[Session]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM sessions ORDER BY updated_at DESC").fetchall()
        return [self._row_to_session(row) for row in rows]

    def update_session(self, session_id: str, changes: Mapping[str, Any]) -> Session:
        with self._lock:
            session = _apply_changes(self.get_session(session_id), changes)
            with self._conn:
                self._conn.execute(
                    """
                    UPDATE sessions SET
                        title = ?, document_content = ?, conversation = ?,
                        active_agent_ids = ?, metadata = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (*self._session_to_tuple(session)[1:6], session.updated_at.isoformat(), session.id),
                )
        return session

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute("DELETE FROM document_versions WHERE session_id = ?", (session_id,))
                cursor = self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        if cursor.rowcount == 0:
            raise SessionNotFoundError(session_id)
        LOGGER.debug("Deleted session %s", session_id)

    def save_document_version(
        self,
        session_id: str,
        content: str,
        edited_by: str,
        action: str = "manual",
        details: Mapping[str, Any] | None = None,
    ) -> DocumentVersion:
        version = DocumentVersion(
            session_id=session_id,
            content=content,
            edited_by=edited_by,
            action=action,
            details=dict(details or {}),
        )
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        """
                        INSERT INTO document_versions (
                            id, session_id, content, edited_by, action, details, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            version.id,
                            version.session_id,
                            version.content,
                            version.edited_by,
                            version.action,
                            json.dumps(version.details, ensure_ascii=False),
                            version.created_at.isoformat(),
                        ),
                    )
            except sqlite3.IntegrityError as exc:
                raise SessionNotFoundError(session_id) from exc
        return version

    def get_document_versions(self, session_id: str) -> list[DocumentVersion]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM document_versions WHERE session_id = ? ORDER BY created_at DESC, rowid DESC",
                (session_id,),
            ).fetchall()
        return [self._row_to_version(row) for row in rows]

    def restore_document_version(self, session_id: str, version_id: str) -> Session:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM document_versions WHERE id = ? AND session_id = ?",
                (version_id, session_id),
            ).fetchone()
            if row is None:
                raise SessionNotFoundError(version_id)
            content = row["content"]
            session = self.update_session(session_id, {"document_content": content})
            self.save_document_version(session_id, content, "user", "manual", {"restored_from": version_id})
        return session

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error:  # pragma: no cover - closing twice
                LOGGER.debug("Failed to close session store", exc_info=True)

    def _session_to_tuple(self, session: Session) -> tuple[Any, ...]:
        conversation = [turn.to_dict() for turn in session.conversation if not turn.is_provisional]
        return (
            session.id,
            session.title,
            session.document_content,
            json.dumps(conversation, ensure_ascii=False),
            json.dumps(list(session.active_agent_ids)),
            json.dumps(session.metadata, ensure_ascii=False),
            session.created_at.isoformat(),
            session.updated_at.isoformat(),
        )

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        return Session.from_dict(
            {
                "id": row["id"],
                "title": row["title"],
                "document_content": row["document_content"],
                "conversation": json.loads(row["conversation"] or "[]"),
                "active_agent_ids": json.loads(row["active_agent_ids"] or "[]"),
                "metadata": json.loads(row["metadata"] or "{}"),
                "created_at": row["created_at"],
                "updated_at": row["updated_at"],
            }
        )

    def _row_to_version(self, row: sqlite3.Row) -> DocumentVersion:
        return DocumentVersion(
            id=row["id"],
            session_id=row["session_id"],
            content=row["content"],
            edited_by=row["edited_by"],
            action=row["action"],
            details=json.loads(row["details"] or "{}"),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
