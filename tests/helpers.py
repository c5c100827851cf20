"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files::

    from helpers import ScriptedAdapter, agent_reply
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Mapping, Sequence, Union

from writersroom.ai.adapters import ModelReply, StructuredCall
from writersroom.ai.reply_schema import TOOL_NAME, AgentReply, reply_to_wire
from writersroom.conversation.models import (
    Agent,
    AppendAction,
    DiffEdit,
    DiffSetAction,
    DocumentAction,
    NextSpeaker,
    RequestEditAction,
    TokenUsage,
)

ScriptStep = Union[ModelReply, BaseException, Callable[[Sequence[Mapping[str, Any]]], ModelReply]]

WRITER = Agent(id="writer", display_name="Writer", avatar="🌟", can_edit_document=True, system_prompt="Write.")
EDITOR = Agent(id="editor", display_name="Editor", avatar="📝", system_prompt="Edit.")
CRITIC = Agent(id="critic", display_name="Critic", avatar="🎭", system_prompt="Critique.")
TEST_AGENTS = (WRITER, EDITOR, CRITIC)


def agent_reply(
    speaker: str,
    message: str,
    *,
    next_type: str = "user",
    next_agent: str | None = None,
    action: DocumentAction | None = None,
    usage: TokenUsage | None = None,
) -> ModelReply:
    """A well-formed tool-call reply as an OpenAI-compatible model would send it."""

    reply = AgentReply(
        speaker=speaker,
        message=message,
        next_speaker=NextSpeaker(type=next_type, agent_id=next_agent),  # type: ignore[arg-type]
        action=action,
    )
    return ModelReply(
        structured_call=StructuredCall(name=TOOL_NAME, arguments=json.dumps(reply_to_wire(reply))),
        usage=usage,
    )


def raw_reply(arguments: str, *, output_text: str | None = None) -> ModelReply:
    return ModelReply(output_text=output_text, structured_call=StructuredCall(name=TOOL_NAME, arguments=arguments))


def text_reply(text: str) -> ModelReply:
    return ModelReply(output_text=text)


def append(*paragraphs: str) -> AppendAction:
    return AppendAction(tuple(paragraphs))


def diff(*pairs: tuple[str, str]) -> DiffSetAction:
    return DiffSetAction(tuple(DiffEdit(old, new) for old, new in pairs))


def request_edit(target: str, instructions: str) -> RequestEditAction:
    return RequestEditAction(target_agent_id=target, instructions=instructions)


class ScriptedAdapter:
    """Model adapter stub that plays back scripted replies in order.

    Tool calls (agent turns) consume ``script``; free-text calls (summaries,
    titles) consume ``text_script``. An exhausted turn script answers with a
    reply that hands the floor to the user, so runs always settle. When
    ``gate`` is set every tool call waits for it before answering; ``cancelled``
    counts tool calls aborted while waiting.
    """

    def __init__(
        self,
        script: Iterable[ScriptStep] = (),
        *,
        text_script: Iterable[ScriptStep] = (),
        gate: asyncio.Event | None = None,
    ) -> None:
        self.script: list[ScriptStep] = list(script)
        self.text_script: list[ScriptStep] = list(text_script)
        self.gate = gate
        self.calls: list[dict[str, Any]] = []
        self.started = asyncio.Event()
        self.cancelled = 0

    @property
    def turn_calls(self) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["tool_spec"] is not None]

    @property
    def text_calls(self) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["tool_spec"] is None]

    def speaker_order(self) -> list[str]:
        """Agent ids in the order their turns were requested, read from the prompts."""

        order = []
        for call in self.turn_calls:
            system_prompt = call["messages"][0]["content"]
            marker = 'with speaker "'
            start = system_prompt.index(marker) + len(marker)
            order.append(system_prompt[start : system_prompt.index('"', start)])
        return order

    async def generate_structured_reply(
        self,
        messages: Sequence[Mapping[str, Any]],
        tool_spec: Mapping[str, Any] | None = None,
        tool_choice: Mapping[str, Any] | str | None = None,
    ) -> ModelReply:
        self.calls.append({"messages": list(messages), "tool_spec": tool_spec, "tool_choice": tool_choice})
        if tool_spec is None:
            step: ScriptStep = self.text_script.pop(0) if self.text_script else text_reply("Summary text")
        else:
            self.started.set()
            if self.gate is not None:
                try:
                    await self.gate.wait()
                except asyncio.CancelledError:
                    self.cancelled += 1
                    raise
            step = self.script.pop(0) if self.script else agent_reply("writer", "Nothing to add.")
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(messages)
        return step


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until it holds or ``timeout`` expires."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)
