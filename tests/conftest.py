"""Shared pytest fixtures."""

from __future__ import annotations

import random
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Iterator

import pytest

from helpers import TEST_AGENTS, ScriptedAdapter
from writersroom.documents.diff_worker import DiffWorker
from writersroom.orchestration.orchestrator import OrchestratorConfig, TurnOrchestrator
from writersroom.storage.sessions import InMemorySessionStore


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep settings, keys and logs out of the real home directory."""

    monkeypatch.setenv("WRITERSROOM_LOG_DIR", str(tmp_path / "logs"))
    for name in ("WRITERSROOM_API_KEY", "WRITERSROOM_BASE_URL", "WRITERSROOM_MODEL", "WRITERSROOM_OBSERVER_MODE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def thread_executor() -> Iterator[ThreadPoolExecutor]:
    executor = ThreadPoolExecutor(max_workers=1)
    yield executor
    executor.shutdown(wait=False, cancel_futures=True)


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def make_orchestrator(store: InMemorySessionStore, thread_executor: ThreadPoolExecutor):
    """Factory building an orchestrator over the in-memory store and a scripted adapter."""

    def _factory(adapter: Any | None = None, **config: Any) -> TurnOrchestrator:
        options: dict[str, Any] = {
            "user_timeout_seconds": 60.0,
            "observer_grace_seconds": 60.0,
            "autosave_debounce_seconds": 0.0,
            "auto_summarize": False,
            "auto_title": False,
        }
        options.update(config)
        return TurnOrchestrator(
            adapter or ScriptedAdapter(),
            store,
            catalog=TEST_AGENTS,
            config=OrchestratorConfig(**options),
            diff_worker=DiffWorker(executor=thread_executor, timeout=5.0),
            rng=random.Random(7),
        )

    return _factory
