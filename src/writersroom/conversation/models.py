"""Conversation, document action, and session data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional, Sequence, Union

USER_SPEAKER = "user"
SYSTEM_SPEAKER = "system"

NextSpeakerType = Literal["specific", "random", "user"]


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return _utcnow()


@dataclass(slots=True, frozen=True)
class Agent:
    """Configured persona that can take a turn in the conversation."""

    id: str
    display_name: str
    title: str = ""
    avatar: str = ""
    can_edit_document: bool = False
    system_prompt: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "title": self.title,
            "avatar": self.avatar,
            "can_edit": self.can_edit_document,
            "system_prompt": self.system_prompt,
        }


@dataclass(slots=True, frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "TokenUsage | None":
        if not isinstance(payload, Mapping):
            return None
        return cls(
            prompt_tokens=int(payload.get("prompt_tokens") or 0),
            completion_tokens=int(payload.get("completion_tokens") or 0),
            total_tokens=int(payload.get("total_tokens") or 0),
        )


# ----------------------------------------------------------------------
# Document actions
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class DiffEdit:
    """Replace ``old_text`` with ``new_text``; an empty ``new_text`` deletes."""

    old_text: str
    new_text: str

    def to_dict(self) -> Dict[str, str]:
        return {"oldText": self.old_text, "newText": self.new_text}


@dataclass(slots=True, frozen=True)
class AppendAction:
    paragraphs: tuple[str, ...] = ()

    kind = "append"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "paragraphs": list(self.paragraphs)}


@dataclass(slots=True, frozen=True)
class DiffSetAction:
    edits: tuple[DiffEdit, ...] = ()

    kind = "diff"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "edits": [edit.to_dict() for edit in self.edits]}


@dataclass(slots=True, frozen=True)
class RequestEditAction:
    target_agent_id: str
    instructions: str

    kind = "request_edit"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "target_agent_id": self.target_agent_id,
            "instructions": self.instructions,
        }


DocumentAction = Union[AppendAction, DiffSetAction, RequestEditAction]


def document_action_from_dict(payload: Mapping[str, Any] | None) -> DocumentAction | None:
    """Rebuild a persisted :data:`DocumentAction` (see ``to_dict`` on each variant)."""

    if not isinstance(payload, Mapping):
        return None
    kind = str(payload.get("type") or "").lower()
    if kind == AppendAction.kind:
        return AppendAction(tuple(str(item) for item in payload.get("paragraphs") or ()))
    if kind == DiffSetAction.kind:
        edits = []
        for entry in payload.get("edits") or ():
            if isinstance(entry, Mapping):
                edits.append(DiffEdit(str(entry.get("oldText", "")), str(entry.get("newText", ""))))
        return DiffSetAction(tuple(edits))
    if kind == RequestEditAction.kind:
        return RequestEditAction(
            target_agent_id=str(payload.get("target_agent_id") or ""),
            instructions=str(payload.get("instructions") or ""),
        )
    return None


@dataclass(slots=True)
class DiffApplicationResult:
    """Outcome of one edit inside a diff batch, produced even when it fails."""

    old_text: str
    new_text: str
    applied: bool
    similarity: Optional[float] = None
    matched_span: Optional[str] = None
    error: Optional[str] = None
    strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "old_text": self.old_text,
            "new_text": self.new_text,
            "applied": self.applied,
        }
        for key in ("similarity", "matched_span", "error", "strategy"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DiffApplicationResult":
        similarity = payload.get("similarity")
        return cls(
            old_text=str(payload.get("old_text", "")),
            new_text=str(payload.get("new_text", "")),
            applied=bool(payload.get("applied")),
            similarity=float(similarity) if similarity is not None else None,
            matched_span=payload.get("matched_span"),
            error=payload.get("error"),
            strategy=payload.get("strategy"),
        )


# ----------------------------------------------------------------------
# Conversation
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class NextSpeaker:
    type: NextSpeakerType = "random"
    agent_id: Optional[str] = None


@dataclass(slots=True)
class ConversationTurn:
    """Represents a row inside the conversation log."""

    speaker_id: str
    message: str
    id: str = field(default_factory=new_id)
    target_agent_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    is_provisional: bool = False
    document_action: Optional[DocumentAction] = None
    token_usage: Optional[TokenUsage] = None
    summarized_turn_count: Optional[int] = None

    @property
    def is_summary(self) -> bool:
        return self.summarized_turn_count is not None

    @property
    def is_agent(self) -> bool:
        return self.speaker_id not in (USER_SPEAKER, SYSTEM_SPEAKER)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the turn for persistence."""

        payload: Dict[str, Any] = {
            "id": self.id,
            "speaker": self.speaker_id,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "is_provisional": self.is_provisional,
        }
        if self.target_agent_id:
            payload["target_agent"] = self.target_agent_id
        if self.document_action is not None:
            payload["document_action"] = self.document_action.to_dict()
        if self.token_usage is not None:
            payload["token_usage"] = self.token_usage.to_dict()
        if self.summarized_turn_count is not None:
            payload["summarized_turn_count"] = self.summarized_turn_count
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ConversationTurn":
        count = payload.get("summarized_turn_count")
        return cls(
            id=str(payload.get("id") or new_id()),
            speaker_id=str(payload.get("speaker") or SYSTEM_SPEAKER),
            message=str(payload.get("message") or ""),
            target_agent_id=payload.get("target_agent") or None,
            created_at=_parse_timestamp(payload.get("created_at")),
            is_provisional=bool(payload.get("is_provisional", False)),
            document_action=document_action_from_dict(payload.get("document_action")),
            token_usage=TokenUsage.from_dict(payload.get("token_usage")),
            summarized_turn_count=int(count) if count is not None else None,
        )


def system_turn(message: str) -> ConversationTurn:
    return ConversationTurn(speaker_id=SYSTEM_SPEAKER, message=message)


@dataclass(slots=True, frozen=True)
class TurnRequest:
    """Unit of work for the turn queue, bound to the session and run it was issued in.

    ``floor`` is the orchestrator's floor epoch at enqueue time; a user message
    or an explicit agent request bumps it, and a turn finishing under an older
    epoch does not pick the next speaker.
    """

    agent_id: str
    session_id: str
    request_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_utcnow)
    reason: str = "agent_turn"
    run_id: int = 0
    floor: int = 0


# ----------------------------------------------------------------------
# Sessions
# ----------------------------------------------------------------------


@dataclass(slots=True)
class Session:
    id: str
    title: str
    document_content: str = ""
    conversation: list[ConversationTurn] = field(default_factory=list)
    active_agent_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "document_content": self.document_content,
            "conversation": [turn.to_dict() for turn in self.conversation],
            "active_agent_ids": list(self.active_agent_ids),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Session":
        return cls(
            id=str(payload["id"]),
            title=str(payload.get("title") or ""),
            document_content=str(payload.get("document_content") or ""),
            conversation=[
                ConversationTurn.from_dict(entry)
                for entry in payload.get("conversation") or ()
                if isinstance(entry, Mapping)
            ],
            active_agent_ids=[str(item) for item in payload.get("active_agent_ids") or ()],
            created_at=_parse_timestamp(payload.get("created_at")),
            updated_at=_parse_timestamp(payload.get("updated_at")),
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass(slots=True)
class DocumentVersion:
    """Snapshot of the document recorded after a successful mutation."""

    session_id: str
    content: str
    edited_by: str
    action: str = "manual"
    details: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=_utcnow)


def total_token_usage(conversation: Sequence[ConversationTurn]) -> int:
    return sum(turn.token_usage.total_tokens for turn in conversation if turn.token_usage)


__all__ = [
    "USER_SPEAKER",
    "SYSTEM_SPEAKER",
    "Agent",
    "TokenUsage",
    "DiffEdit",
    "AppendAction",
    "DiffSetAction",
    "RequestEditAction",
    "DocumentAction",
    "document_action_from_dict",
    "DiffApplicationResult",
    "NextSpeaker",
    "ConversationTurn",
    "system_turn",
    "TurnRequest",
    "Session",
    "DocumentVersion",
    "new_id",
    "total_token_usage",
]
