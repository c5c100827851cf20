"""Decide which participant acts after an agent reply."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .models import NextSpeaker

__all__ = ["SpeakerDecision", "SpeakerResolver", "coerce_next_speaker"]

LOGGER = logging.getLogger(__name__)

_VALID_TYPES = frozenset({"specific", "random", "user"})


@dataclass(slots=True, frozen=True)
class SpeakerDecision:
    """Either ``next_agent_id`` is set or ``wait_for_user`` is true, never both.

    ``notes`` are system messages the caller appends to the conversation log.
    """

    next_agent_id: str | None = None
    wait_for_user: bool = False
    notes: tuple[str, ...] = ()


def coerce_next_speaker(value: Any) -> NextSpeaker:
    """Return a :class:`NextSpeaker`; anything unusable becomes ``random``."""

    if isinstance(value, NextSpeaker):
        if value.type in _VALID_TYPES:
            return value
        return NextSpeaker()
    if isinstance(value, Mapping):
        kind = str(value.get("type") or "").strip().lower()
        if kind in _VALID_TYPES:
            agent = value.get("agent", value.get("agent_id"))
            return NextSpeaker(type=kind, agent_id=str(agent) if agent else None)  # type: ignore[arg-type]
    return NextSpeaker()


class SpeakerResolver:
    """Maps a reply's ``next_speaker`` choice onto the active roster."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def pick_random(self, roster: Sequence[str], exclude: str | None = None) -> str:
        """Uniform pick over ``roster``; ``exclude`` is honored only when others remain."""

        if not roster:
            raise ValueError("Cannot pick a speaker from an empty roster")
        candidates = [agent_id for agent_id in roster if agent_id != exclude] if exclude else list(roster)
        if not candidates:
            candidates = list(roster)
        return self._rng.choice(candidates)

    def resolve(
        self,
        next_speaker: NextSpeaker | Mapping[str, Any] | None,
        roster: Sequence[str],
        acting_agent_id: str,
        observer_mode: bool = False,
    ) -> SpeakerDecision:
        choice = coerce_next_speaker(next_speaker)

        if choice.type == "user":
            return SpeakerDecision(wait_for_user=True)

        if choice.type == "specific" and choice.agent_id:
            if choice.agent_id in roster:
                return SpeakerDecision(next_agent_id=choice.agent_id)
            note = f"{choice.agent_id} is not in the active roster."
            LOGGER.info("Requested speaker %s is not active", choice.agent_id)
            if observer_mode:
                return SpeakerDecision(next_agent_id=acting_agent_id, notes=(note,))
            return SpeakerDecision(wait_for_user=True, notes=(note,))

        # "specific" without an agent id is as good as malformed
        if not roster:
            return SpeakerDecision(wait_for_user=True)
        return SpeakerDecision(next_agent_id=self.pick_random(roster))

    def revalidate(self, agent_id: str, roster: Sequence[str]) -> SpeakerDecision:
        """Re-resolve a scheduled target that has since left the roster."""

        if agent_id in roster:
            return SpeakerDecision(next_agent_id=agent_id)
        if not roster:
            return SpeakerDecision(wait_for_user=True)
        replacement = self.pick_random(roster)
        note = f"{agent_id} is no longer active; {replacement} takes the turn instead."
        return SpeakerDecision(next_agent_id=replacement, notes=(note,))
