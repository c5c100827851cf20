"""Apply structured document actions on behalf of an agent."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..conversation.models import (
    Agent,
    AppendAction,
    DiffApplicationResult,
    DiffSetAction,
    DocumentAction,
    RequestEditAction,
)
from ..errors import DiffBatchTimeout
from .diff_worker import DiffWorker

__all__ = ["MutationResult", "MutationApplier", "append_paragraphs"]

LOGGER = logging.getLogger(__name__)
PARAGRAPH_SEPARATOR = "\n\n"


@dataclass(slots=True)
class MutationResult:
    """Outcome of :meth:`MutationApplier.apply`.

    ``applied_action`` is set only when the document actually changed.
    ``message_annotation`` is text the caller appends to the agent's message.
    """

    document: str
    applied_action: Optional[DocumentAction] = None
    diagnostics: list[DiffApplicationResult] = field(default_factory=list)
    authorized: bool = True
    message_annotation: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.applied_action is not None

    @property
    def applied_count(self) -> int:
        return sum(1 for item in self.diagnostics if item.applied)

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.diagnostics if not item.applied)


def append_paragraphs(document: str, paragraphs: tuple[str, ...]) -> str:
    addition = PARAGRAPH_SEPARATOR.join(paragraphs)
    if not addition:
        return document
    if not document:
        return addition
    return document + PARAGRAPH_SEPARATOR + addition


class MutationApplier:
    """Applies one :data:`DocumentAction` while enforcing edit permission."""

    def __init__(self, diff_worker: DiffWorker | None = None) -> None:
        self._diff_worker = diff_worker or DiffWorker()

    @property
    def diff_worker(self) -> DiffWorker:
        return self._diff_worker

    async def apply(
        self,
        document: str,
        action: DocumentAction | None,
        agent: Agent,
    ) -> MutationResult:
        if action is None:
            return MutationResult(document=document)

        if isinstance(action, RequestEditAction):
            annotation = f"[Edit request -> {action.target_agent_id}]\n{action.instructions}".rstrip()
            return MutationResult(document=document, message_annotation=annotation)

        if not agent.can_edit_document:
            LOGGER.info(
                "Agent %s lacks edit permission; ignoring %s action", agent.id, action.kind
            )
            return MutationResult(
                document=document,
                authorized=False,
                message_annotation=f"[{action.kind} ignored: {agent.display_name} cannot edit the document]",
            )

        if isinstance(action, AppendAction):
            updated = append_paragraphs(document, action.paragraphs)
            if updated == document:
                return MutationResult(document=document)
            return MutationResult(document=updated, applied_action=action)

        if isinstance(action, DiffSetAction):
            return await self._apply_diff_set(document, action)

        raise TypeError(f"Unsupported document action: {action!r}")  # pragma: no cover

    async def _apply_diff_set(self, document: str, action: DiffSetAction) -> MutationResult:
        if not action.edits:
            return MutationResult(document=document)
        try:
            updated, diagnostics = await self._diff_worker.apply(document, action.edits)
        except DiffBatchTimeout as exc:
            diagnostics = [
                DiffApplicationResult(
                    old_text=edit.old_text, new_text=edit.new_text, applied=False, error=str(exc)
                )
                for edit in action.edits
            ]
            return MutationResult(document=document, diagnostics=diagnostics)

        applied = tuple(
            edit for edit, result in zip(action.edits, diagnostics) if result.applied
        )
        for index, result in enumerate(diagnostics, 1):
            if result.applied:
                LOGGER.debug(
                    "Diff %d applied via %s (similarity=%s)", index, result.strategy, result.similarity
                )
            else:
                LOGGER.warning("Diff %d failed: %s", index, result.error)
        if not applied:
            return MutationResult(document=document, diagnostics=diagnostics)
        return MutationResult(
            document=updated,
            applied_action=DiffSetAction(applied),
            diagnostics=diagnostics,
        )
