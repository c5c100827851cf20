"""Prompt templates for agent turns, summaries and session titles."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence

from ..conversation.models import (
    SYSTEM_SPEAKER,
    USER_SPEAKER,
    Agent,
    ConversationTurn,
)
from .reply_schema import TOOL_NAME

SUMMARY_MAX_CHARS = 500
TITLE_SAMPLE_CHARS = 2_000
TURN_SEPARATOR = "\n---\n\n"


def agent_system_prompt(agent: Agent, roster: Sequence[Agent]) -> str:
    """Persona prompt plus the roster and the document action rules."""

    return f"""{agent.system_prompt.strip()}

## Participating agents
{_roster_section(roster)}

Only the agents listed above take part in the conversation. Never name any other agent as the next speaker.

## Replying
Always answer by calling the {TOOL_NAME} function with speaker "{agent.id}".

{_action_rules_section()}
"""


def _roster_section(roster: Sequence[Agent]) -> str:
    lines = []
    for member in roster:
        suffix = " [can edit]" if member.can_edit_document else ""
        title = f": {member.title}" if member.title else ""
        lines.append(f"- {member.display_name} ({member.id}){title}{suffix}")
    return "\n".join(lines)


def _action_rules_section() -> str:
    return """## Document actions
The document_action object must always contain every field (type, contents, diffs, content, target_agent).
Leave unused fields empty: contents=[], diffs=[], content="", target_agent="".

- "none": no change.
- "append": add paragraphs at the end of the document. Uses contents only.
  Example: {type: "append", contents: ["First paragraph", "Second paragraph"], diffs: [], content: "", target_agent: ""}
- "diff": change specific passages. Uses diffs only.
  Example: {type: "diff", contents: [], diffs: [{oldText: "before", newText: "after"}], content: "", target_agent: ""}
- "request_edit": ask an agent with edit permission to change the document. Uses content and target_agent.
  Example: {type: "request_edit", contents: [], diffs: [], content: "what to change", target_agent: "agent_id"}

When using diff:
- Copy oldText from the current document exactly, including line breaks.
- To delete a passage set newText to "".
- Never rewrite the whole document. Keep each diff small and split large changes into several diffs."""


def format_turn(turn: ConversationTurn, agents: Mapping[str, Agent]) -> str:
    if turn.speaker_id == USER_SPEAKER:
        target = agents.get(turn.target_agent_id or "")
        heading = f"## User -> {target.display_name}" if target else "## User"
        return f"{heading}\n\n{turn.message}\n"
    if turn.speaker_id == SYSTEM_SPEAKER:
        return f"## System\n\n*{turn.message}*\n"
    agent = agents.get(turn.speaker_id)
    name = agent.display_name if agent else turn.speaker_id
    avatar = (agent.avatar if agent else "") or "💬"
    return f"## {avatar} {name}\n\n{turn.message}\n"


def format_document(document: str) -> str:
    return f"# Current document\n\n**Characters: {len(document)}**\n\n```markdown\n{document}\n```\n\n"


def turn_context_message(
    conversation: Sequence[ConversationTurn],
    document: str,
    agents: Mapping[str, Agent],
) -> str:
    """User-role message carrying the visible history and the document."""

    history = [turn for turn in conversation if not turn.is_provisional]
    parts: List[str] = []
    if history:
        rendered = TURN_SEPARATOR.join(format_turn(turn, agents) for turn in history)
        parts.append(f"# Conversation so far\n\n{rendered}\n\n---\n\n")
    parts.append(format_document(document))
    if history:
        parts.append(
            "Building on the conversation above, it is your turn. Review and edit the document "
            f"as needed. Always respond with the {TOOL_NAME} function."
        )
    else:
        parts.append(
            "Review the current document and start the discussion about the piece. You may edit "
            f"it if needed. Always respond with the {TOOL_NAME} function."
        )
    return "".join(parts)


def build_turn_messages(
    agent: Agent,
    roster: Sequence[Agent],
    conversation: Sequence[ConversationTurn],
    document: str,
    catalog: Mapping[str, Agent] | None = None,
) -> List[Dict[str, Any]]:
    """Chat messages for one agent turn.

    ``catalog`` resolves display names for speakers that have since left the
    roster; it defaults to the roster itself.
    """

    agents = dict(catalog or {})
    agents.update({member.id: member for member in roster})
    return [
        {"role": "system", "content": agent_system_prompt(agent, roster)},
        {"role": "user", "content": turn_context_message(conversation, document, agents)},
    ]


# ----------------------------------------------------------------------
# Summaries and titles
# ----------------------------------------------------------------------


def summary_messages(turns: Sequence[ConversationTurn], agents: Mapping[str, Agent]) -> List[Dict[str, Any]]:
    lines = []
    for turn in turns:
        if turn.speaker_id == USER_SPEAKER:
            speaker = "User"
        elif turn.speaker_id == SYSTEM_SPEAKER:
            speaker = "System"
        else:
            agent = agents.get(turn.speaker_id)
            speaker = agent.display_name if agent else turn.speaker_id
        lines.append(f"{speaker}: {turn.message}")
    transcript = "\n".join(lines)
    return [
        {
            "role": "system",
            "content": "You summarize conversations. Capture the important information concisely.",
        },
        {
            "role": "user",
            "content": (
                "Summarize the conversation below. Include decisions made, how the discussion "
                "developed and the key points of any content that was written.\n\n"
                f"# Conversation\n{transcript}\n\n"
                f"# Summary\nKeep it brief (at most {SUMMARY_MAX_CHARS} characters):"
            ),
        },
    ]


def format_summary(text: str, turn_count: int) -> str:
    return f"📋 Summary of earlier conversation ({turn_count} turns):\n{text.strip()}"


def title_messages(document: str) -> List[Dict[str, Any]]:
    sample = document[:TITLE_SAMPLE_CHARS]
    return [
        {
            "role": "system",
            "content": "You name pieces of writing. Reply with the title only, no quotes or commentary.",
        },
        {
            "role": "user",
            "content": f"Propose a short, fitting title for this document:\n\n{sample}",
        },
    ]


def clean_title(raw: str | None) -> str:
    """Strip surrounding quotes and brackets the model tends to add."""

    text = (raw or "").strip().splitlines()[0].strip() if (raw or "").strip() else ""
    return text.strip("\"'`「」『』“”‘’ ").strip()


__all__ = [
    "agent_system_prompt",
    "format_turn",
    "format_document",
    "turn_context_message",
    "build_turn_messages",
    "summary_messages",
    "format_summary",
    "title_messages",
    "clean_title",
]
