"""Agent persona catalog."""

from .personas import DEFAULT_AGENTS, Roster, load_personas

__all__ = ["DEFAULT_AGENTS", "Roster", "load_personas"]
