"""Dispatch fuzzy diff batches to a worker process with a timeout."""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import Executor, ProcessPoolExecutor
from typing import Sequence

from ..conversation.models import DiffApplicationResult, DiffEdit
from ..errors import DiffBatchTimeout
from .diff_matcher import DEFAULT_MIN_SIMILARITY, run_diff_batch

__all__ = ["DiffWorker", "DEFAULT_DIFF_TIMEOUT"]

LOGGER = logging.getLogger(__name__)
DEFAULT_DIFF_TIMEOUT = 30.0


class DiffWorker:
    """Runs :func:`run_diff_batch` off the event loop.

    Requests and responses are plain dicts so the default
    :class:`~concurrent.futures.ProcessPoolExecutor` can pickle them. Tests may
    inject any :class:`~concurrent.futures.Executor`.
    """

    def __init__(
        self,
        *,
        executor: Executor | None = None,
        timeout: float = DEFAULT_DIFF_TIMEOUT,
        min_similarity: float = DEFAULT_MIN_SIMILARITY,
    ) -> None:
        self._executor = executor
        self._owns_executor = executor is None
        self.timeout = max(0.0, float(timeout))
        self.min_similarity = float(min_similarity)

    async def apply(
        self,
        document: str,
        edits: Sequence[DiffEdit],
        *,
        min_similarity: float | None = None,
    ) -> tuple[str, list[DiffApplicationResult]]:
        """Apply ``edits`` to ``document`` in the worker.

        Raises:
            DiffBatchTimeout: when the batch does not finish within ``timeout``.
        """

        request = {
            "document": document,
            "edits": [edit.to_dict() for edit in edits],
            "min_similarity": self.min_similarity if min_similarity is None else float(min_similarity),
        }
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        future = loop.run_in_executor(self._get_executor(), run_diff_batch, request)
        try:
            response = await asyncio.wait_for(future, timeout=self.timeout or None)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Diff batch of %d edit(s) timed out after %.1fs", len(edits), self.timeout)
            self._discard_executor()
            raise DiffBatchTimeout(self.timeout) from exc
        LOGGER.debug(
            "Diff batch of %d edit(s) finished in %.1fms",
            len(edits),
            (time.perf_counter() - started) * 1000.0,
        )
        results = [DiffApplicationResult.from_dict(entry) for entry in response.get("results", ())]
        return str(response.get("document", document)), results

    def close(self) -> None:
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        self._executor = None

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=1)
            self._owns_executor = True
        return self._executor

    def _discard_executor(self) -> None:
        # A timed-out job keeps its worker busy; start over with a fresh pool.
        if self._owns_executor:
            self.close()
