"""Contract between the orchestrator and language-model adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from ..conversation.models import TokenUsage

__all__ = ["ChatMessage", "StructuredCall", "ModelReply", "ModelAdapter"]

ChatMessage = Mapping[str, Any]


@dataclass(slots=True, frozen=True)
class StructuredCall:
    """A tool call returned by the model; ``arguments`` is the raw JSON text."""

    name: str
    arguments: str
    call_id: str | None = None


@dataclass(slots=True, frozen=True)
class ModelReply:
    output_text: str | None = None
    structured_call: StructuredCall | None = None
    usage: TokenUsage | None = None


@runtime_checkable
class ModelAdapter(Protocol):
    """Anything that can answer a chat request, optionally through a forced tool call.

    ``tool_spec`` and ``tool_choice`` use the OpenAI chat-completions shapes.
    Passing ``None`` for both requests a plain text answer. Cancelling the
    awaiting task must abort the underlying request.
    """

    async def generate_structured_reply(
        self,
        messages: Sequence[ChatMessage],
        tool_spec: Mapping[str, Any] | None = None,
        tool_choice: Mapping[str, Any] | str | None = None,
    ) -> ModelReply:
        ...
