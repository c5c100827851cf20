"""Agent persona catalog and the active roster."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ..conversation.models import Agent
from ..errors import RosterError

__all__ = ["DEFAULT_AGENTS", "load_personas", "agent_from_mapping", "Roster"]

LOGGER = logging.getLogger(__name__)

_WRITER_PROMPT = """You are the lead writer of a short story written together with a small team.
Your prose is lean and precise, with a sense of irony and a twist ending.

Guidelines:
- Build on the current document; keep its theme and tone consistent.
- Prefer writing over explaining. Add new material with "append".
- Keep what already works. Avoid rewriting whole passages.
- Consider feedback from the others, but you own the story in the end."""

_EDITOR_PROMPT = """You are a seasoned fiction editor who helps the writer make the most of their talent.
Cut what is unnecessary and keep what matters.

Guidelines:
- Read the current document and point at concrete passages.
- When something needs to change, ask the writer with a "request_edit" action.
- Prefer additions and reinforcement over wholesale rewrites.
- Respect the author's intent and style."""

_CRITIC_PROMPT = """You are a literary critic reading the work in progress as a demanding reader would.

Guidelines:
- Judge structure, pacing, characters and the ending.
- Name strengths as clearly as weaknesses.
- Be specific and quote the passage you mean.
- Keep your comments short."""

_PROOFREADER_PROMPT = """You are a meticulous proofreader.

Guidelines:
- Look for typos, grammar slips, inconsistent names and punctuation.
- Report each problem with the exact text and the correction.
- Ask the writer to apply corrections with a "request_edit" action.
- Do not comment on style or plot."""

DEFAULT_AGENTS: tuple[Agent, ...] = (
    Agent(
        id="writer",
        display_name="Writer",
        title="Lead author",
        avatar="🌟",
        can_edit_document=True,
        system_prompt=_WRITER_PROMPT,
    ),
    Agent(
        id="editor",
        display_name="Editor",
        title="Story editor",
        avatar="📝",
        system_prompt=_EDITOR_PROMPT,
    ),
    Agent(
        id="critic",
        display_name="Critic",
        title="Literary critic",
        avatar="🎭",
        system_prompt=_CRITIC_PROMPT,
    ),
    Agent(
        id="proofreader",
        display_name="Proofreader",
        title="Copy editor",
        avatar="🔍",
        system_prompt=_PROOFREADER_PROMPT,
    ),
)


def agent_from_mapping(entry: Mapping[str, Any]) -> Agent:
    agent_id = str(entry.get("id") or "").strip()
    if not agent_id:
        raise RosterError("Persona entry is missing an id")
    return Agent(
        id=agent_id,
        display_name=str(entry.get("name") or agent_id),
        title=str(entry.get("title") or ""),
        avatar=str(entry.get("avatar") or ""),
        can_edit_document=bool(entry.get("can_edit", False)),
        system_prompt=str(entry.get("system_prompt") or ""),
    )


def load_personas(path: Path | str) -> tuple[Agent, ...]:
    """Read a YAML list of personas.

    Each entry needs an ``id``; ``name``, ``title``, ``avatar``, ``can_edit``
    and ``system_prompt`` are optional.

    Raises:
        RosterError: when the file is unreadable, malformed, empty or has duplicate ids.
    """

    target = Path(path).expanduser()
    parser = YAML(typ="safe")
    try:
        payload = parser.load(target.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RosterError(f"Unable to read personas file {target}: {exc}") from exc
    except YAMLError as exc:
        raise RosterError(f"Personas file {target} is not valid YAML: {exc}") from exc

    if isinstance(payload, Mapping):
        payload = payload.get("agents")
    if not isinstance(payload, list) or not payload:
        raise RosterError(f"Personas file {target} must contain a non-empty list of agents")

    agents: list[Agent] = []
    seen: set[str] = set()
    for entry in payload:
        if not isinstance(entry, Mapping):
            raise RosterError("Each persona entry must be a mapping")
        agent = agent_from_mapping(entry)
        if agent.id in seen:
            raise RosterError(f"Duplicate persona id: {agent.id}")
        seen.add(agent.id)
        agents.append(agent)
    LOGGER.debug("Loaded %d persona(s) from %s", len(agents), target)
    return tuple(agents)


class Roster:
    """Ordered set of active agent ids over a persona catalog; never empty."""

    def __init__(self, catalog: Iterable[Agent], active_ids: Sequence[str] | None = None) -> None:
        self._catalog: dict[str, Agent] = {}
        for agent in catalog:
            if agent.id in self._catalog:
                raise RosterError(f"Duplicate persona id: {agent.id}")
            self._catalog[agent.id] = agent
        if not self._catalog:
            raise RosterError("The persona catalog is empty")
        self._active: tuple[str, ...] = ()
        self.set_active(active_ids or list(self._catalog))

    @property
    def catalog(self) -> dict[str, Agent]:
        return dict(self._catalog)

    @property
    def active_ids(self) -> tuple[str, ...]:
        return self._active

    @property
    def active_agents(self) -> tuple[Agent, ...]:
        return tuple(self._catalog[agent_id] for agent_id in self._active)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._active

    def __len__(self) -> int:
        return len(self._active)

    def get(self, agent_id: str) -> Agent | None:
        return self._catalog.get(agent_id)

    def set_active(self, agent_ids: Sequence[str]) -> tuple[str, ...]:
        ordered: list[str] = []
        for agent_id in agent_ids:
            if agent_id not in self._catalog:
                raise RosterError(f"Unknown agent id: {agent_id}")
            if agent_id not in ordered:
                ordered.append(agent_id)
        if not ordered:
            raise RosterError("At least one agent must stay active")
        self._active = tuple(ordered)
        return self._active

    def toggle(self, agent_id: str) -> tuple[str, ...]:
        """Activate or deactivate ``agent_id``; the last active agent cannot be removed."""

        if agent_id not in self._catalog:
            raise RosterError(f"Unknown agent id: {agent_id}")
        if agent_id in self._active:
            if len(self._active) == 1:
                raise RosterError("At least one agent must stay active")
            self._active = tuple(item for item in self._active if item != agent_id)
        else:
            self._active = (*self._active, agent_id)
        return self._active
