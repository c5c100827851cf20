"""Conversation log with provisional-entry bookkeeping."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Sequence

from .models import USER_SPEAKER, ConversationTurn, system_turn

__all__ = ["ConversationLog", "summary_boundary"]

LOGGER = logging.getLogger(__name__)


def summary_boundary(turns: Sequence[ConversationTurn]) -> int:
    """Index just after the newest summary entry in ``turns``, or 0 when there is none."""

    for index in range(len(turns) - 1, -1, -1):
        if turns[index].is_summary:
            return index + 1
    return 0


class ConversationLog:
    """Ordered list of :class:`ConversationTurn` entries.

    The log is append-only except for three operations: replacing or removing
    a provisional entry, and splicing a summary over a range of entries. At
    most one provisional entry per speaker exists at any time.
    """

    def __init__(self, turns: Iterable[ConversationTurn] | None = None) -> None:
        self._turns: list[ConversationTurn] = []
        for turn in turns or ():
            # Provisional entries never survive a reload.
            if not turn.is_provisional:
                self._turns.append(turn)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(self._turns)

    def __getitem__(self, index: int) -> ConversationTurn:
        return self._turns[index]

    def snapshot(self) -> list[ConversationTurn]:
        return list(self._turns)

    def real_turns(self) -> list[ConversationTurn]:
        return [turn for turn in self._turns if not turn.is_provisional]

    def find(self, turn_id: str) -> int:
        for index, turn in enumerate(self._turns):
            if turn.id == turn_id:
                return index
        return -1

    # ------------------------------------------------------------------
    # Appends
    # ------------------------------------------------------------------
    def append(self, turn: ConversationTurn) -> ConversationTurn:
        if turn.is_provisional:
            return self.add_provisional(turn)
        self._turns.append(turn)
        return turn

    def system_note(self, message: str) -> ConversationTurn:
        return self.append(system_turn(message))

    def add_provisional(self, turn: ConversationTurn) -> ConversationTurn:
        """Insert a placeholder, replacing any earlier one from the same speaker."""

        if not turn.is_provisional:
            raise ValueError("add_provisional expects a provisional turn")
        existing = self.provisional_for(turn.speaker_id)
        if existing is not None:
            LOGGER.debug("Replacing stale provisional entry for %s", turn.speaker_id)
            self._turns.remove(existing)
        self._turns.append(turn)
        return turn

    def provisional_for(self, speaker_id: str) -> ConversationTurn | None:
        for turn in self._turns:
            if turn.is_provisional and turn.speaker_id == speaker_id:
                return turn
        return None

    def replace_provisional(self, turn_id: str, final: ConversationTurn) -> ConversationTurn:
        """Swap a provisional entry for its final content in place.

        When the placeholder is gone (for example after a stop) the final turn
        is appended instead.
        """

        if final.is_provisional:
            raise ValueError("replacement turn must not be provisional")
        index = self.find(turn_id)
        if index == -1 or not self._turns[index].is_provisional:
            self._turns.append(final)
        else:
            self._turns[index] = final
        return final

    def remove_provisional(self, turn_id: str | None = None) -> int:
        """Remove one provisional entry by id, or all of them; return the count."""

        before = len(self._turns)
        if turn_id is None:
            self._turns = [turn for turn in self._turns if not turn.is_provisional]
        else:
            self._turns = [
                turn for turn in self._turns if not (turn.is_provisional and turn.id == turn_id)
            ]
        return before - len(self._turns)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------
    def last_summary_position(self) -> int:
        return summary_boundary(self._turns)

    def splice_summary(self, summary: ConversationTurn, replaced_ids: Sequence[str]) -> int:
        """Replace the entries in ``replaced_ids`` with ``summary``.

        The summary takes the position of the first replaced entry that is
        still present. Returns the number of entries removed; nothing changes
        when none of them remain.
        """

        wanted = set(replaced_ids)
        position = None
        kept: list[ConversationTurn] = []
        removed = 0
        for turn in self._turns:
            if turn.id in wanted and not turn.is_summary:
                if position is None:
                    position = len(kept)
                removed += 1
                continue
            kept.append(turn)
        if position is None:
            return 0
        kept.insert(position, summary)
        self._turns = kept
        return removed

    def user_turns(self) -> list[ConversationTurn]:
        return [turn for turn in self._turns if turn.speaker_id == USER_SPEAKER]
