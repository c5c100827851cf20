"""Command line bootstrap for headless writers-room runs."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .agents.personas import DEFAULT_AGENTS, load_personas
from .ai.client import AIClient
from .conversation.models import Agent, ConversationTurn
from .documents.diff_worker import DiffWorker
from .errors import RosterError
from .events import TurnCompleted
from .orchestration.orchestrator import OrchestratorConfig, TurnOrchestrator
from .services.settings import Settings, SettingsStore, redact_secret
from .storage.sessions import SessionRepository, SqliteSessionStore
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(level: int | str | None = None, *, debug: bool = False, force: bool = False) -> Path:
    """Configure file and console logging for the CLI."""

    resolved = logging_utils.resolve_level(level, debug=debug)
    path = logging_utils.setup_logging(resolved, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(resolved))
    return path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover - unreadable settings directory
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def load_agents(settings: Settings) -> tuple[Agent, ...]:
    """Persona catalog from ``settings.personas_path`` or the built-in defaults."""

    if not settings.personas_path:
        return DEFAULT_AGENTS
    return load_personas(Path(settings.personas_path).expanduser())


def build_orchestrator(
    settings: Settings,
    repository: SessionRepository,
    *,
    adapter: Any | None = None,
    agents: Sequence[Agent] | None = None,
) -> TurnOrchestrator:
    """Wire an orchestrator from settings; ``adapter`` defaults to :class:`AIClient`."""

    catalog = tuple(agents) if agents is not None else load_agents(settings)
    active = [agent_id for agent_id in settings.active_agent_ids if any(a.id == agent_id for a in catalog)]
    return TurnOrchestrator(
        adapter or AIClient(settings.client_settings()),
        repository,
        catalog=catalog,
        active_agent_ids=active or None,
        config=OrchestratorConfig.from_settings(settings),
        diff_worker=DiffWorker(
            timeout=settings.diff_timeout_seconds,
            min_similarity=settings.diff_min_similarity,
        ),
    )


async def observe(
    orchestrator: TurnOrchestrator,
    turns: int,
    *,
    document: str = "",
    prompt: str | None = None,
    timeout: float | None = None,
) -> list[ConversationTurn]:
    """Let the agents talk among themselves until ``turns`` agent turns complete."""

    finished = asyncio.Event()
    completed = 0

    def _on_turn(_event: TurnCompleted) -> None:
        nonlocal completed
        completed += 1
        if completed >= turns:
            finished.set()

    orchestrator.events.subscribe(TurnCompleted, _on_turn)
    try:
        await orchestrator.ensure_session()
        if document:
            await orchestrator.edit_document(document)
        if prompt:
            await orchestrator.submit_user_message(prompt)
        await orchestrator.start()
        try:
            await asyncio.wait_for(finished.wait(), timeout)
        except asyncio.TimeoutError:
            _LOGGER.warning("Observer run timed out after %d of %d turns", completed, turns)
        orchestrator.stop()
        return orchestrator.conversation
    finally:
        orchestrator.events.unsubscribe(TurnCompleted, _on_turn)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `writersroom` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("WRITERSROOM_DEBUG", default=False)
    configure_logging(args.log_level, debug=debug)

    settings_path = args.settings_path or os.environ.get("WRITERSROOM_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    if args.observe is not None:
        cli_overrides.setdefault("observer_mode", True)
    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(debug=True, force=True)

    repository = SqliteSessionStore(Path(args.db_path).expanduser() if args.db_path else None)
    try:
        if args.sessions:
            _print_sessions(repository)
            return
        if args.observe is not None:
            if not settings.api_key:
                print("No API key configured; set WRITERSROOM_API_KEY or --set api_key=...", file=sys.stderr)
                raise SystemExit(2)
            document = Path(args.document).read_text(encoding="utf-8") if args.document else ""
            try:
                asyncio.run(_run_observer(settings, repository, args.observe, document, args.prompt, args.timeout))
            except RosterError as exc:
                print(f"Invalid personas: {exc}", file=sys.stderr)
                raise SystemExit(2) from exc
            except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
                _LOGGER.info("Shutdown requested by user.")
            return
        _print_sessions(repository)
    finally:
        repository.close()


async def _run_observer(
    settings: Settings,
    repository: SessionRepository,
    turns: int,
    document: str,
    prompt: str | None,
    timeout: float | None,
    *,
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    orchestrator = build_orchestrator(settings, repository)
    try:
        conversation = await observe(orchestrator, max(1, turns), document=document, prompt=prompt, timeout=timeout)
        _print_conversation(conversation, orchestrator, destination)
    finally:
        await orchestrator.aclose()
        adapter = orchestrator.adapter
        if isinstance(adapter, AIClient):
            await adapter.aclose()


def _print_conversation(conversation: Sequence[ConversationTurn], orchestrator: TurnOrchestrator, stream: TextIO) -> None:
    catalog = orchestrator.roster.catalog
    for turn in conversation:
        agent = catalog.get(turn.speaker_id)
        name = f"{agent.avatar} {agent.display_name}".strip() if agent else turn.speaker_id
        stream.write(f"[{name}] {turn.message}\n\n")
    stream.write("=== Document ===\n")
    stream.write(orchestrator.document)
    stream.write("\n")


def _print_sessions(repository: SessionRepository, stream: TextIO | None = None) -> None:
    destination = stream or sys.stdout
    sessions = repository.get_all_sessions()
    if not sessions:
        destination.write("No saved sessions.\n")
        return
    for session in sessions:
        destination.write(
            f"{session.id}  {session.updated_at:%Y-%m-%d %H:%M}  {session.title}"
            f"  ({len(session.conversation)} turns, {len(session.document_content)} chars)\n"
        )


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="writersroom",
        description="Run a writers-room conversation headlessly or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.writersroom/settings.json path.",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        metavar="PATH",
        help="Override the default ~/.writersroom/sessions.sqlite path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--sessions", action="store_true", help="List stored sessions and exit.")
    parser.add_argument(
        "--observe",
        metavar="TURNS",
        type=int,
        help="Run an observer-mode conversation for TURNS agent turns and print the log.",
    )
    parser.add_argument("--document", metavar="PATH", help="Seed the observed session with this text file.")
    parser.add_argument("--prompt", help="Opening user message for the observed session.")
    parser.add_argument("--timeout", type=float, default=None, help="Give up an observer run after N seconds.")
    parser.add_argument("--log-level", default=None, help="Logging level (default INFO).")
    parser.add_argument("--debug", action="store_true", help="Shortcut for --log-level DEBUG.")
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Parse ``KEY=VALUE`` pairs into typed :class:`Settings` overrides."""

    hints = get_type_hints(Settings)
    known = {item.name for item in fields(Settings)}
    overrides: Dict[str, Any] = {}
    for entry in items:
        key, separator, raw_value = entry.partition("=")
        key = key.strip()
        if not separator:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in known:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(hints[key], raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, text: str) -> Any:
    optional = type(None) in get_args(annotation)
    if optional and text.lower() in {"none", "null"}:
        return None
    kind = _base_type(annotation)
    if kind is bool:
        return _parse_bool(text)
    if kind in (int, float):
        return int(text, 10) if kind is int else float(text)
    if kind is list:
        if not text.startswith("["):
            return [part.strip() for part in text.split(",") if part.strip()]
        try:
            return list(json.loads(text))
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
    return text


def _base_type(annotation: Any) -> Any:
    """``list[str]`` -> ``list``, ``int | None`` -> ``int``."""

    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in (list, dict):
        return origin
    members = [arg for arg in get_args(annotation) if arg is not type(None)]
    return _base_type(members[0]) if members else origin


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered not in _TRUE_VALUES | _FALSE_VALUES:
        raise ValueError(f"Cannot coerce '{value}' to a boolean.")
    return lowered in _TRUE_VALUES


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "key_path": str(store.vault.key_path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("WRITERSROOM_"))


if __name__ == "__main__":  # pragma: no cover
    main()
