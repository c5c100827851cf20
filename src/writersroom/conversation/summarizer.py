"""Compress old conversation entries into chained summary entries."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from ..ai import prompts
from ..ai.adapters import ModelAdapter
from .history import ConversationLog, summary_boundary
from .models import SYSTEM_SPEAKER, Agent, ConversationTurn, system_turn

__all__ = ["SummaryOutcome", "ConversationSummarizer", "should_summarize", "select_range", "splice"]

LOGGER = logging.getLogger(__name__)
SUMMARY_FAILED_MESSAGE = "⚠️ Summarizing the conversation history failed; the full history was kept."


@dataclass(slots=True)
class SummaryOutcome:
    """Result of one summarization attempt.

    On failure ``summary_entry`` is a visible system error entry,
    ``failed`` is true and ``replaced_ids`` is empty.
    """

    summary_entry: ConversationTurn
    source_turn_count: int
    replaced_ids: tuple[str, ...] = field(default_factory=tuple)
    failed: bool = False


def should_summarize(
    conversation_length: int,
    threshold: int,
    is_already_summarizing: bool,
    last_summary_position: int = 0,
) -> bool:
    if is_already_summarizing or threshold <= 0:
        return False
    return conversation_length - last_summary_position >= threshold


def select_range(
    conversation: Sequence[ConversationTurn], keep_recent_count: int
) -> list[ConversationTurn]:
    """Entries after the newest summary and before the recent tail.

    Provisional entries are never selected.
    """

    start = summary_boundary(conversation)
    end = len(conversation) - max(0, keep_recent_count)
    if end <= start:
        return []
    return [turn for turn in conversation[start:end] if not turn.is_provisional and not turn.is_summary]


def splice(conversation: Sequence[ConversationTurn], outcome: SummaryOutcome) -> list[ConversationTurn]:
    """Return ``conversation`` with ``outcome`` merged in, as :meth:`ConversationLog.splice_summary` does.

    A failed outcome is appended as a plain system entry. Provisional entries
    are not carried over.
    """

    log = ConversationLog(conversation)
    if outcome.failed or not outcome.replaced_ids:
        log.append(outcome.summary_entry)
    else:
        log.splice_summary(outcome.summary_entry, outcome.replaced_ids)
    return log.snapshot()


class ConversationSummarizer:
    """Produces summary entries through a free-text model call."""

    should_summarize = staticmethod(should_summarize)
    select_range = staticmethod(select_range)
    splice = staticmethod(splice)

    def __init__(self, adapter: ModelAdapter, *, agents: Mapping[str, Agent] | None = None) -> None:
        self._adapter = adapter
        self._agents: dict[str, Agent] = dict(agents or {})

    def update_agents(self, agents: Mapping[str, Agent]) -> None:
        self._agents = dict(agents)

    async def summarize(
        self,
        conversation: Sequence[ConversationTurn],
        keep_recent_count: int,
    ) -> SummaryOutcome | None:
        """Summarize :func:`select_range` of ``conversation``; ``None`` when nothing qualifies."""

        selected = select_range(conversation, keep_recent_count)
        if not selected:
            LOGGER.debug(
                "Nothing to summarize (length=%d, keep_recent=%d)", len(conversation), keep_recent_count
            )
            return None

        raw_count = len(selected)
        try:
            reply = await self._adapter.generate_structured_reply(
                prompts.summary_messages(selected, self._agents), None, None
            )
        except Exception as exc:
            LOGGER.warning("Conversation summary failed: %s", exc)
            return SummaryOutcome(
                summary_entry=system_turn(SUMMARY_FAILED_MESSAGE),
                source_turn_count=len(selected),
                failed=True,
            )

        text = (reply.output_text or "").strip()
        if not text:
            LOGGER.warning("Conversation summary came back empty")
            return SummaryOutcome(
                summary_entry=system_turn(SUMMARY_FAILED_MESSAGE),
                source_turn_count=len(selected),
                failed=True,
            )

        entry = ConversationTurn(
            speaker_id=SYSTEM_SPEAKER,
            message=prompts.format_summary(text, raw_count),
            summarized_turn_count=raw_count,
            token_usage=reply.usage,
        )
        LOGGER.info("Summarized %d conversation entries", len(selected))
        return SummaryOutcome(
            summary_entry=entry,
            source_turn_count=len(selected),
            replaced_ids=tuple(turn.id for turn in selected),
        )
