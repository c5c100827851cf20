"""Turn orchestrator: runs agent turns against the shared document.

Every agent turn goes through the same path::

    TurnQueue -> prompt -> model adapter -> reply schema -> MutationApplier
              -> SpeakerResolver -> next TurnRequest | waiting for the user

Turns run one at a time on the queue's drain task. Anything that can change
while a turn is suspended (the loaded session, the run, the roster) is
re-validated right before the model call and again before the result is
committed, so a stale turn leaves no trace.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from ..agents.personas import DEFAULT_AGENTS, Roster
from ..ai import prompts
from ..ai.adapters import ModelAdapter, ModelReply
from ..ai.reply_schema import (
    AgentReply,
    ReplyParseError,
    build_tool_choice,
    build_tool_spec,
    fallback_reply,
    parse_reply_arguments,
)
from ..conversation.history import ConversationLog
from ..conversation.models import (
    USER_SPEAKER,
    Agent,
    ConversationTurn,
    Session,
    TurnRequest,
    total_token_usage,
)
from ..conversation.speaker import SpeakerResolver
from ..conversation.summarizer import ConversationSummarizer, SummaryOutcome, should_summarize
from ..conversation.turn_queue import TurnQueue
from ..documents.diff_worker import DiffWorker
from ..documents.mutations import MutationApplier, MutationResult
from ..errors import ModelAdapterError, RosterError
from ..events import (
    ConversationChanged,
    DocumentChanged,
    EventBus,
    QueueLengthChanged,
    SessionLoaded,
    StateChanged,
    SummaryMerged,
    TitleChanged,
    TurnCompleted,
    TurnFailed,
)
from ..storage.sessions import DEFAULT_SESSION_TITLE, SessionRepository
from .autosave import DebouncedSessionSaver
from .timers import UserTurnTimer

__all__ = ["OrchestratorState", "OrchestratorConfig", "TurnOrchestrator"]

LOGGER = logging.getLogger(__name__)

THINKING_MESSAGE = "💭 Thinking..."
USER_TIMEOUT_NOTE = "No reply from the user; the conversation continues."
AUTH_FAILURE_MESSAGE = (
    "⚠️ The model provider rejected the API key. Check the API key in the settings and start again."
)
TOKEN_WARNING_THRESHOLD = 100_000


class OrchestratorState(str, Enum):
    IDLE = "idle"
    DEQUEUING = "dequeuing"
    AWAITING_MODEL_REPLY = "awaiting_model_reply"
    APPLYING_MUTATION = "applying_mutation"
    RESOLVING_NEXT_SPEAKER = "resolving_next_speaker"
    WAITING_FOR_USER = "waiting_for_user"


@dataclass(slots=True)
class OrchestratorConfig:
    """Behavioural knobs; see :meth:`from_settings` for the mapping from user settings."""

    observer_mode: bool = False
    user_timeout_seconds: float = 30.0
    observer_grace_seconds: float = 2.0
    agent_delay_seconds: float = 0.0
    auto_summarize: bool = True
    summarize_threshold: int = 20
    keep_recent_count: int | None = None
    autosave_debounce_seconds: float = 1.0
    title_trigger_chars: int = 1_000
    auto_title: bool = True

    @property
    def effective_keep_recent_count(self) -> int:
        if self.keep_recent_count is not None:
            return max(0, int(self.keep_recent_count))
        return max(1, self.summarize_threshold // 2)

    @property
    def user_wait_seconds(self) -> float:
        return self.observer_grace_seconds if self.observer_mode else self.user_timeout_seconds

    @classmethod
    def from_settings(cls, settings: Any) -> "OrchestratorConfig":
        return cls(
            observer_mode=bool(settings.observer_mode),
            user_timeout_seconds=float(settings.user_timeout_seconds),
            observer_grace_seconds=float(settings.observer_grace_seconds),
            agent_delay_seconds=float(settings.agent_delay_seconds),
            auto_summarize=bool(settings.auto_summarize),
            summarize_threshold=int(settings.summarize_threshold),
            keep_recent_count=settings.keep_recent_count,
            autosave_debounce_seconds=float(settings.autosave_debounce_seconds),
            title_trigger_chars=int(settings.title_trigger_chars),
        )


class TurnOrchestrator:
    """Coordinates agent turns, user input and persistence for one loaded session."""

    def __init__(
        self,
        adapter: ModelAdapter,
        repository: SessionRepository,
        *,
        catalog: Sequence[Agent] = DEFAULT_AGENTS,
        active_agent_ids: Sequence[str] | None = None,
        config: OrchestratorConfig | None = None,
        event_bus: EventBus | None = None,
        mutation_applier: MutationApplier | None = None,
        diff_worker: DiffWorker | None = None,
        speaker_resolver: SpeakerResolver | None = None,
        summarizer: ConversationSummarizer | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._adapter = adapter
        self._repository = repository
        self._config = config or OrchestratorConfig()
        self._events = event_bus or EventBus()
        self._roster = Roster(catalog, active_agent_ids)
        self._mutations = mutation_applier or MutationApplier(diff_worker or DiffWorker())
        self._resolver = speaker_resolver or SpeakerResolver(rng)
        self._summarizer = summarizer or ConversationSummarizer(adapter, agents=self._roster.catalog)
        self._queue = TurnQueue(self._handle_turn, length_observer=self._on_queue_length)
        self._user_timer = UserTurnTimer(self._on_user_timeout)
        self._saver = DebouncedSessionSaver(repository, self._config.autosave_debounce_seconds)

        self._session: Session | None = None
        self._log = ConversationLog()
        self._document = ""
        self._state = OrchestratorState.IDLE
        self._running = False
        self._run_id = 0
        self._floor = 0
        self._turn_call: Optional[asyncio.Future[ModelReply]] = None
        self._last_speaker_id: str | None = None
        self._summary_task: Optional[asyncio.Task[None]] = None
        self._title_task: Optional[asyncio.Task[None]] = None
        self._delayed_turns: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def adapter(self) -> ModelAdapter:
        return self._adapter

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def session_id(self) -> str | None:
        return self._session.id if self._session is not None else None

    @property
    def document(self) -> str:
        return self._document

    @property
    def conversation(self) -> list[ConversationTurn]:
        return self._log.snapshot()

    @property
    def roster(self) -> Roster:
        return self._roster

    @property
    def queue(self) -> TurnQueue:
        return self._queue

    @property
    def is_summarizing(self) -> bool:
        return self._summary_task is not None and not self._summary_task.done()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Begin a run: a random agent opens, or the last user message gets its answer."""

        await self.ensure_session()
        if self._running:
            return
        self._running = True
        self._run_id += 1
        self._user_timer.cancel()

        user_turns = self._log.user_turns()
        target = user_turns[-1].target_agent_id if user_turns else None
        if target not in self._roster:
            target = self._resolver.pick_random(self._roster.active_ids)
        LOGGER.info("Conversation started (run=%d, first speaker=%s)", self._run_id, target)
        self._enqueue(target, "start")

    def stop(self) -> None:
        """Stop the run; queued turns are dropped and an in-flight turn is discarded."""

        was_running = self._running
        self._running = False
        self._run_id += 1
        self._queue.clear()
        self._user_timer.cancel()
        self._cancel_delayed_turns()
        # Only the turn's own request; summary and title calls keep running.
        if self._turn_call is not None and not self._turn_call.done():
            self._turn_call.cancel()
        if self._log.remove_provisional():
            self._conversation_changed()
        self._set_state(OrchestratorState.IDLE)
        if was_running:
            LOGGER.info("Conversation stopped")
            self._schedule_save()

    async def submit_user_message(self, text: str, target_agent_id: str | None = None) -> ConversationTurn | None:
        """Record a user message and, during a run, hand the floor to the addressee."""

        message = (text or "").strip()
        if not message:
            return None
        await self.ensure_session()
        self._user_timer.cancel()
        target = target_agent_id if target_agent_id in self._roster else None
        if target_agent_id and target is None:
            LOGGER.info("User addressed inactive agent %s; routing randomly", target_agent_id)
        turn = self._log.append(ConversationTurn(speaker_id=USER_SPEAKER, message=message, target_agent_id=target))
        self._conversation_changed()
        self._schedule_save()

        if self._running:
            # User input preempts queued agent turns but not the one already running.
            self._queue.clear()
            self._cancel_delayed_turns()
            self._floor += 1
            responder = target or self._resolver.pick_random(self._roster.active_ids)
            self._enqueue(responder, "user_message")
        return turn

    def note_user_typing(self) -> None:
        if self._state is OrchestratorState.WAITING_FOR_USER:
            self._user_timer.restart()

    async def request_agent_turn(self, agent_id: str) -> None:
        """Ask ``agent_id`` to speak next, starting a run when none is active."""

        if agent_id not in self._roster:
            raise RosterError(f"Agent {agent_id} is not active")
        await self.ensure_session()
        self._user_timer.cancel()
        if not self._running:
            self._running = True
            self._run_id += 1
        self._queue.clear()
        self._cancel_delayed_turns()
        self._floor += 1
        self._enqueue(agent_id, "requested")

    async def edit_document(self, text: str) -> None:
        """Apply a direct user edit and record it in the version history."""

        await self.ensure_session()
        if text == self._document:
            return
        self._document = text
        self._document_changed(USER_SPEAKER, "manual")
        await self._save_version(USER_SPEAKER, "manual", {})
        self._schedule_save()
        self._maybe_generate_title()

    def set_active_agents(self, agent_ids: Sequence[str]) -> tuple[str, ...]:
        """Replace the roster; raises :class:`RosterError` for an empty or unknown set."""

        active = self._roster.set_active(agent_ids)
        LOGGER.info("Active agents: %s", ", ".join(active))
        self._schedule_save()
        return active

    async def ensure_session(self) -> Session:
        if self._session is None:
            return await self.new_session()
        return self._session

    async def new_session(self, title: str | None = None) -> Session:
        session = await self._run_blocking(
            lambda: self._repository.create_session(title, active_agent_ids=self._roster.active_ids)
        )
        await self.load_session(session)
        return session

    async def load_session(self, session: Session | str) -> Session:
        """Make ``session`` the working copy; work issued for the previous one becomes stale."""

        if isinstance(session, str):
            session = await self._run_blocking(self._repository.get_session, session)
        self.stop()
        await self._saver.flush()

        self._session = session
        self._log = ConversationLog(session.conversation)
        self._document = session.document_content
        self._last_speaker_id = None
        known = [agent_id for agent_id in session.active_agent_ids if self._roster.get(agent_id) is not None]
        if known:
            self._roster.set_active(known)
        LOGGER.info("Loaded session %s (%d turns)", session.id, len(self._log))
        self._events.publish(SessionLoaded(session_id=session.id, title=session.title))
        self._conversation_changed()
        return session

    async def delete_session(self, session_id: str) -> None:
        if session_id == self.session_id:
            self.stop()
            self._saver.discard(session_id)
            self._session = None
            self._log = ConversationLog()
            self._document = ""
        else:
            self._saver.discard(session_id)
        await self._run_blocking(self._repository.delete_session, session_id)
        LOGGER.info("Deleted session %s", session_id)

    async def summarize_now(self) -> SummaryOutcome | None:
        """Summarize immediately; returns ``None`` when a summary is already running or nothing qualifies."""

        await self.ensure_session()
        if self.is_summarizing:
            return None
        task = asyncio.get_running_loop().create_task(self._run_summary(self._session.id))  # type: ignore[union-attr]
        self._summary_task = task
        return await task

    async def aclose(self) -> None:
        self.stop()
        for task in (self._summary_task, self._title_task):
            if task is not None and not task.done():
                task.cancel()
        await self._queue.aclose()
        await self._saver.aclose()
        self._mutations.diff_worker.close()

    # ------------------------------------------------------------------
    # Turn execution
    # ------------------------------------------------------------------
    async def _handle_turn(self, request: TurnRequest) -> None:
        if not self._is_current(request):
            LOGGER.debug("Discarding stale turn for %s (session=%s)", request.agent_id, request.session_id)
            return
        self._user_timer.cancel()
        self._set_state(OrchestratorState.DEQUEUING, request.agent_id)

        decision = self._resolver.revalidate(request.agent_id, self._roster.active_ids)
        for note in decision.notes:
            self._log.system_note(note)
        agent_id = decision.next_agent_id
        agent = self._roster.get(agent_id) if agent_id else None
        if agent is None:
            self._enter_waiting_for_user()
            return

        provisional = self._log.add_provisional(
            ConversationTurn(speaker_id=agent.id, message=THINKING_MESSAGE, is_provisional=True)
        )
        self._conversation_changed()
        try:
            await self._run_turn(request, agent, provisional)
        except asyncio.CancelledError:
            if self._is_valid(request, agent.id):
                raise
            self._abort_turn(provisional, None)
        except Exception as exc:
            LOGGER.exception("Turn for %s failed", agent.id)
            self._fail_turn(request, agent, provisional, exc)

    async def _run_turn(self, request: TurnRequest, agent: Agent, provisional: ConversationTurn) -> None:
        self._set_state(OrchestratorState.AWAITING_MODEL_REPLY, agent.id)
        if not self._is_valid(request, agent.id):
            self._abort_turn(provisional, None)
            return

        roster = self._roster.active_agents
        messages = prompts.build_turn_messages(
            agent, roster, self._log.real_turns(), self._document, self._roster.catalog
        )
        call = asyncio.ensure_future(
            self._adapter.generate_structured_reply(messages, build_tool_spec(roster), build_tool_choice())
        )
        self._turn_call = call
        try:
            reply = await call
        finally:
            self._turn_call = None

        if not self._is_current(request):
            self._abort_turn(provisional, None)
            return
        if agent.id not in self._roster:
            self._abort_turn(provisional, f"{agent.display_name} left the conversation while replying.")
            self._enter_waiting_for_user()
            return

        parsed = self._parse_reply(agent, reply)
        self._set_state(OrchestratorState.APPLYING_MUTATION, agent.id)
        result = await self._mutations.apply(self._document, parsed.action, agent)
        if not self._is_current(request):
            self._abort_turn(provisional, None)
            return

        final = ConversationTurn(
            id=provisional.id,
            speaker_id=agent.id,
            message=self._compose_message(parsed, result),
            document_action=parsed.action,
            token_usage=reply.usage,
        )
        self._log.replace_provisional(provisional.id, final)
        self._last_speaker_id = agent.id
        self._conversation_changed()
        if result.changed:
            self._document = result.document
            self._document_changed(agent.id, result.applied_action.kind)  # type: ignore[union-attr]
            await self._save_version(
                agent.id,
                result.applied_action.kind,  # type: ignore[union-attr]
                {"applied": result.applied_count, "failed": result.failed_count},
            )
        self._check_token_usage()
        self._events.publish(
            TurnCompleted(
                session_id=request.session_id,
                agent_id=agent.id,
                turn_id=final.id,
                applied_edits=result.applied_count,
                failed_edits=result.failed_count,
            )
        )
        self._schedule_save()
        self._maybe_summarize()
        self._maybe_generate_title()

        if not self._is_current(request):
            return
        if request.floor != self._floor:
            # The user or an explicit request already chose who speaks next.
            LOGGER.debug("Turn for %s finished after the floor changed; not chaining", agent.id)
            return
        self._set_state(OrchestratorState.RESOLVING_NEXT_SPEAKER, agent.id)
        decision = self._resolver.resolve(
            parsed.next_speaker, self._roster.active_ids, agent.id, self._config.observer_mode
        )
        if decision.notes:
            for note in decision.notes:
                self._log.system_note(note)
            self._conversation_changed()
        if decision.wait_for_user or decision.next_agent_id is None:
            self._enter_waiting_for_user()
        else:
            self._schedule_agent_turn(decision.next_agent_id, "next_speaker")

    def _parse_reply(self, agent: Agent, reply: ModelReply) -> AgentReply:
        call = reply.structured_call
        if call is None:
            LOGGER.warning("%s replied without calling the response function", agent.id)
            return fallback_reply(agent.id, reply.output_text, f"{agent.display_name} did not produce a structured reply.")
        try:
            return parse_reply_arguments(call.arguments, default_speaker=agent.id)
        except ReplyParseError as exc:
            LOGGER.warning("Malformed reply from %s: %s", agent.id, exc)
            return fallback_reply(agent.id, reply.output_text, f"{agent.display_name}'s reply could not be read ({exc}).")

    @staticmethod
    def _compose_message(reply: AgentReply, result: MutationResult) -> str:
        parts = [reply.message.strip()]
        if result.message_annotation:
            parts.append(result.message_annotation)
        if result.failed_count:
            total = len(result.diagnostics)
            parts.append(f"[{result.failed_count} of {total} edit(s) could not be applied]")
        return "\n\n".join(part for part in parts if part)

    def _abort_turn(self, provisional: ConversationTurn, note: str | None) -> None:
        removed = self._log.remove_provisional(provisional.id)
        if note:
            self._log.system_note(note)
        if removed or note:
            self._conversation_changed()
        LOGGER.debug("Aborted turn for %s", provisional.speaker_id)

    def _fail_turn(self, request: TurnRequest, agent: Agent, provisional: ConversationTurn, exc: Exception) -> None:
        if not self._is_current(request):
            self._abort_turn(provisional, None)
            return
        auth_failure = isinstance(exc, ModelAdapterError) and exc.auth_failure
        if auth_failure:
            message = AUTH_FAILURE_MESSAGE
        else:
            message = f"⚠️ {agent.display_name} could not reply: {exc}. The conversation was stopped."
        self._abort_turn(provisional, message)
        self._events.publish(TurnFailed(session_id=request.session_id, agent_id=agent.id, error=str(exc)))
        self.stop()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _enqueue(self, agent_id: str, reason: str) -> None:
        session_id = self.session_id
        if session_id is None:
            return
        self._queue.enqueue(
            TurnRequest(agent_id=agent_id, session_id=session_id, reason=reason, run_id=self._run_id, floor=self._floor)
        )

    def _schedule_agent_turn(self, agent_id: str, reason: str) -> None:
        delay = self._config.agent_delay_seconds
        if delay <= 0:
            self._enqueue(agent_id, reason)
            return
        self._set_state(OrchestratorState.IDLE)
        run_id, session_id = self._run_id, self.session_id

        async def _later() -> None:
            await asyncio.sleep(delay)
            if self._running and self._run_id == run_id and self.session_id == session_id:
                self._enqueue(agent_id, reason)

        task = asyncio.get_running_loop().create_task(_later())
        self._delayed_turns.add(task)
        task.add_done_callback(self._delayed_turns.discard)

    def _cancel_delayed_turns(self) -> None:
        for task in list(self._delayed_turns):
            task.cancel()
        self._delayed_turns.clear()

    def _enter_waiting_for_user(self) -> None:
        self._set_state(OrchestratorState.WAITING_FOR_USER)
        if self._running:
            self._user_timer.arm(self._config.user_wait_seconds)

    async def _on_user_timeout(self) -> None:
        if not self._running or self._state is not OrchestratorState.WAITING_FOR_USER:
            return
        roster = self._roster.active_ids
        if self._config.observer_mode:
            exclude = self._last_speaker_id if len(roster) > 1 else None
        else:
            exclude = None
            self._log.system_note(USER_TIMEOUT_NOTE)
            self._conversation_changed()
        agent_id = self._resolver.pick_random(roster, exclude=exclude)
        LOGGER.debug("User turn timed out; %s takes the floor", agent_id)
        self._enqueue(agent_id, "user_timeout")

    def _is_current(self, request: TurnRequest) -> bool:
        return self._running and request.run_id == self._run_id and request.session_id == self.session_id

    def _is_valid(self, request: TurnRequest, agent_id: str) -> bool:
        return self._is_current(request) and agent_id in self._roster

    # ------------------------------------------------------------------
    # Summaries and titles
    # ------------------------------------------------------------------
    def _maybe_summarize(self) -> None:
        if not self._config.auto_summarize or self._session is None:
            return
        if not should_summarize(
            len(self._log),
            self._config.summarize_threshold,
            self.is_summarizing,
            self._log.last_summary_position(),
        ):
            return
        self._summary_task = asyncio.get_running_loop().create_task(self._run_summary(self._session.id))

    async def _run_summary(self, session_id: str) -> SummaryOutcome | None:
        try:
            outcome = await self._summarizer.summarize(
                self._log.real_turns(), self._config.effective_keep_recent_count
            )
        except asyncio.CancelledError:
            LOGGER.debug("Summarization cancelled")
            return None
        if outcome is None:
            return None
        if session_id != self.session_id:
            LOGGER.info("Dropping summary for session %s; another session is loaded", session_id)
            return None
        if outcome.failed:
            self._log.append(outcome.summary_entry)
        else:
            removed = self._log.splice_summary(outcome.summary_entry, outcome.replaced_ids)
            if not removed:
                return None
            self._events.publish(
                SummaryMerged(session_id=session_id, summary_id=outcome.summary_entry.id, replaced_count=removed)
            )
        self._conversation_changed()
        self._schedule_save()
        return outcome

    def _maybe_generate_title(self) -> None:
        session = self._session
        if not self._config.auto_title or session is None:
            return
        if session.title != DEFAULT_SESSION_TITLE or len(self._document) <= self._config.title_trigger_chars:
            return
        if self._title_task is not None and not self._title_task.done():
            return
        self._title_task = asyncio.get_running_loop().create_task(self._generate_title(session.id))

    async def _generate_title(self, session_id: str) -> None:
        try:
            reply = await self._adapter.generate_structured_reply(prompts.title_messages(self._document), None, None)
        except asyncio.CancelledError:
            return
        except Exception as exc:
            LOGGER.warning("Title generation failed: %s", exc)
            return
        title = prompts.clean_title(reply.output_text)
        session = self._session
        if not title or session is None or session.id != session_id or session.title != DEFAULT_SESSION_TITLE:
            return
        session.title = title
        try:
            await self._run_blocking(self._repository.update_session, session_id, {"title": title})
        except Exception:
            LOGGER.exception("Failed to save title for session %s", session_id)
        LOGGER.info("Session %s titled %r", session_id, title)
        self._events.publish(TitleChanged(session_id=session_id, title=title))

    # ------------------------------------------------------------------
    # Persistence and notifications
    # ------------------------------------------------------------------
    def _snapshot(self) -> Dict[str, Any]:
        session = self._session
        conversation = self._log.real_turns()
        metadata = dict(session.metadata) if session is not None else {}
        metadata.update(
            character_count=len(self._document),
            total_tokens=total_token_usage(conversation),
        )
        return {
            "title": session.title if session is not None else DEFAULT_SESSION_TITLE,
            "document_content": self._document,
            "conversation": conversation,
            "active_agent_ids": list(self._roster.active_ids),
            "metadata": metadata,
        }

    def _schedule_save(self) -> None:
        session = self._session
        if session is None:
            return
        snapshot = self._snapshot()
        session.document_content = snapshot["document_content"]
        session.conversation = list(snapshot["conversation"])
        session.active_agent_ids = list(snapshot["active_agent_ids"])
        session.metadata = snapshot["metadata"]
        self._saver.schedule(session.id, snapshot)

    async def _save_version(self, edited_by: str, action: str, details: Mapping[str, Any]) -> None:
        session_id = self.session_id
        if session_id is None:
            return
        try:
            await self._run_blocking(
                self._repository.save_document_version, session_id, self._document, edited_by, action, dict(details)
            )
        except Exception:
            LOGGER.exception("Failed to record document version for session %s", session_id)

    def _check_token_usage(self) -> None:
        total = total_token_usage(self._log.real_turns())
        if total > TOKEN_WARNING_THRESHOLD:
            LOGGER.warning("Token usage is high (%d total); consider summarizing the conversation", total)

    def _set_state(self, state: OrchestratorState, agent_id: str | None = None) -> None:
        previous = self._state
        if previous is state:
            return
        self._state = state
        LOGGER.debug("State %s -> %s", previous.value, state.value)
        self._events.publish(StateChanged(state=state.value, previous=previous.value, agent_id=agent_id))

    def _conversation_changed(self) -> None:
        session_id = self.session_id
        if session_id is not None:
            self._events.publish(ConversationChanged(session_id=session_id, length=len(self._log)))

    def _document_changed(self, edited_by: str, action: str) -> None:
        session_id = self.session_id
        if session_id is not None:
            self._events.publish(
                DocumentChanged(session_id=session_id, content=self._document, edited_by=edited_by, action=action)
            )

    def _on_queue_length(self, pending: int) -> None:
        self._events.publish(QueueLengthChanged(pending=pending))

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))
