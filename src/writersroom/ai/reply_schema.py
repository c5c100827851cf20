"""Translation between the flat ``respond_to_conversation`` wire schema and agent replies.

Strict tool calling requires every field to be present, so the wire format is
a flat object whose unused members are empty. Internally a reply carries a
proper :data:`~writersroom.conversation.models.DocumentAction` or ``None``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from json import JSONDecodeError
from typing import Any, Dict, Mapping, Sequence

from jsonschema import Draft7Validator, ValidationError

from ..conversation.models import (
    Agent,
    AppendAction,
    DiffEdit,
    DiffSetAction,
    DocumentAction,
    NextSpeaker,
    RequestEditAction,
)

__all__ = [
    "TOOL_NAME",
    "ReplyParseError",
    "AgentReply",
    "build_tool_spec",
    "build_tool_choice",
    "parse_reply_arguments",
    "fallback_reply",
    "reply_to_wire",
]

TOOL_NAME = "respond_to_conversation"
WIRE_ACTION_TYPES = ("none", "append", "diff", "request_edit")

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(?P<body>.*)```$", re.IGNORECASE | re.DOTALL)
_JSON_DECODER = json.JSONDecoder()


class ReplyParseError(ValueError):
    """Raised when tool-call arguments cannot be turned into an :class:`AgentReply`."""


@dataclass(slots=True, frozen=True)
class AgentReply:
    speaker: str
    message: str
    next_speaker: NextSpeaker
    action: DocumentAction | None = None
    is_fallback: bool = False


# ----------------------------------------------------------------------
# Outbound: tool definition
# ----------------------------------------------------------------------


def build_tool_spec(roster: Sequence[Agent]) -> Dict[str, Any]:
    """Return the chat-completions tool definition with roster ids injected into enums."""

    agent_ids = [agent.id for agent in roster]
    editor_ids = [agent.id for agent in roster if agent.can_edit_document]
    parameters = {
        "type": "object",
        "properties": {
            "speaker": {"type": "string", "description": "The ID of the agent speaking"},
            "message": {"type": "string", "description": "The message content"},
            "next_speaker": {
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": ["specific", "random", "user"],
                        "description": "Type of next speaker selection",
                    },
                    "agent": {
                        "type": ["string", "null"],
                        "enum": [*agent_ids, None],
                        "description": (
                            "Agent ID when type is specific (must be one of the participating "
                            "agents); null otherwise"
                        ),
                    },
                },
                "required": ["type", "agent"],
                "additionalProperties": False,
            },
            "document_action": {
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": list(WIRE_ACTION_TYPES),
                        "description": 'Type of document action (use "none" for no action)',
                    },
                    "contents": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Paragraphs to append (append only)",
                    },
                    "diffs": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "oldText": {"type": "string"},
                                "newText": {"type": "string"},
                            },
                            "required": ["oldText", "newText"],
                            "additionalProperties": False,
                        },
                        "description": "Replacements (diff only)",
                    },
                    "content": {"type": "string", "description": "Instructions (request_edit only)"},
                    "target_agent": {
                        "type": "string",
                        "enum": [*editor_ids, ""],
                        "description": "Agent with edit permission (request_edit only), empty otherwise",
                    },
                },
                "required": ["type", "contents", "diffs", "content", "target_agent"],
                "additionalProperties": False,
                "description": (
                    'Always provide all fields. Unused fields are empty: contents=[], diffs=[], '
                    'content="", target_agent="".'
                ),
            },
        },
        "required": ["speaker", "message", "next_speaker", "document_action"],
        "additionalProperties": False,
    }
    return {
        "type": "function",
        "function": {
            "name": TOOL_NAME,
            "description": "Respond to the conversation with a message and optional document action",
            "parameters": parameters,
            "strict": True,
        },
    }


def build_tool_choice() -> Dict[str, Any]:
    return {"type": "function", "function": {"name": TOOL_NAME}}


# ----------------------------------------------------------------------
# Inbound: parsing
# ----------------------------------------------------------------------

# Structural check only. Roster membership is the speaker resolver's job, so
# ids are not constrained here.
REPLY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "speaker": {"type": ["string", "null"]},
        "message": {"type": "string"},
        "next_speaker": {"type": ["object", "null"]},
        "document_action": {
            "type": ["object", "null"],
            "properties": {
                "type": {"type": ["string", "null"]},
                "contents": {"type": ["array", "null"], "items": {"type": "string"}},
                "diffs": {
                    "type": ["array", "null"],
                    "items": {
                        "type": "object",
                        "properties": {
                            "oldText": {"type": "string"},
                            "newText": {"type": "string"},
                        },
                        "required": ["oldText", "newText"],
                    },
                },
                "content": {"type": ["string", "null"]},
                "target_agent": {"type": ["string", "null"]},
            },
        },
    },
    "required": ["message"],
}

_REPLY_VALIDATOR = Draft7Validator(REPLY_SCHEMA)


def parse_reply_arguments(arguments: str | bytes | Mapping[str, Any], *, default_speaker: str = "") -> AgentReply:
    """Parse raw tool-call arguments into an :class:`AgentReply`.

    Raises:
        ReplyParseError: when the payload is not JSON or fails the structural schema.
    """

    payload = _coerce_payload(arguments)
    try:
        _REPLY_VALIDATOR.validate(payload)
    except ValidationError as error:
        raise ReplyParseError(_format_validation_error(error)) from error

    return AgentReply(
        speaker=str(payload.get("speaker") or default_speaker),
        message=payload["message"],
        next_speaker=_next_speaker_from_wire(payload.get("next_speaker")),
        action=_action_from_wire(payload.get("document_action")),
    )


def fallback_reply(speaker: str, output_text: str | None, error: str | None = None) -> AgentReply:
    """Synthetic reply used when the model returned no usable tool call."""

    message = (output_text or "").strip() or (error or "The reply could not be read.")
    return AgentReply(
        speaker=speaker,
        message=message,
        next_speaker=NextSpeaker(type="random"),
        action=None,
        is_fallback=True,
    )


def reply_to_wire(reply: AgentReply) -> Dict[str, Any]:
    """Render a reply in the flat wire format (used for scripted adapters and logs)."""

    action: Dict[str, Any] = {"type": "none", "contents": [], "diffs": [], "content": "", "target_agent": ""}
    if isinstance(reply.action, AppendAction):
        action.update(type="append", contents=list(reply.action.paragraphs))
    elif isinstance(reply.action, DiffSetAction):
        action.update(type="diff", diffs=[edit.to_dict() for edit in reply.action.edits])
    elif isinstance(reply.action, RequestEditAction):
        action.update(
            type="request_edit",
            content=reply.action.instructions,
            target_agent=reply.action.target_agent_id,
        )
    return {
        "speaker": reply.speaker,
        "message": reply.message,
        "next_speaker": {"type": reply.next_speaker.type, "agent": reply.next_speaker.agent_id},
        "document_action": action,
    }


def _next_speaker_from_wire(value: Any) -> NextSpeaker:
    if not isinstance(value, Mapping):
        return NextSpeaker(type="random")
    kind = str(value.get("type") or "").strip().lower()
    agent = value.get("agent")
    if kind == "specific":
        if isinstance(agent, str) and agent.strip():
            return NextSpeaker(type="specific", agent_id=agent.strip())
        return NextSpeaker(type="random")
    if kind == "user":
        return NextSpeaker(type="user")
    return NextSpeaker(type="random")


def _action_from_wire(value: Any) -> DocumentAction | None:
    if not isinstance(value, Mapping):
        return None
    kind = str(value.get("type") or "none").strip().lower()
    if kind == "append":
        paragraphs = tuple(item for item in value.get("contents") or () if item)
        return AppendAction(paragraphs) if paragraphs else None
    if kind == "diff":
        edits = tuple(
            DiffEdit(entry["oldText"], entry["newText"]) for entry in value.get("diffs") or ()
        )
        return DiffSetAction(edits) if edits else None
    if kind == "request_edit":
        target = str(value.get("target_agent") or "").strip()
        instructions = str(value.get("content") or "").strip()
        if not instructions:
            return None
        return RequestEditAction(target_agent_id=target, instructions=instructions)
    return None


def _coerce_payload(payload: str | bytes | Mapping[str, Any]) -> Dict[str, Any]:
    if isinstance(payload, Mapping):
        return dict(payload)
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if not isinstance(payload, str):
        raise ReplyParseError("Reply payload must be a mapping or JSON string")
    text = payload.strip()
    if not text:
        raise ReplyParseError("Reply payload is empty")
    parsed = _loads_with_fallback(_strip_code_fence(text))
    if not isinstance(parsed, Mapping):
        raise ReplyParseError("Reply payload must decode to an object")
    return dict(parsed)


def _strip_code_fence(text: str) -> str:
    match = _CODE_FENCE_RE.match(text)
    if match:
        return match.group("body").strip()
    return text


def _loads_with_fallback(text: str) -> Any:
    try:
        return json.loads(text)
    except JSONDecodeError as exc:
        for idx, char in enumerate(text):
            if char == "{":
                try:
                    parsed, _ = _JSON_DECODER.raw_decode(text[idx:])
                except JSONDecodeError:
                    continue
                return parsed
        raise ReplyParseError("Unable to parse reply arguments as JSON") from exc


def _format_validation_error(error: ValidationError) -> str:
    path = ".".join(str(part) for part in error.path)
    if path:
        return f"{path}: {error.message}"
    return error.message
