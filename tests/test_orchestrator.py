"""Behavioural tests for the turn orchestrator."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from helpers import (
    ScriptedAdapter,
    agent_reply,
    append,
    diff,
    raw_reply,
    request_edit,
    text_reply,
    wait_until,
)
from writersroom.conversation.models import USER_SPEAKER, ConversationTurn, Session, TokenUsage
from writersroom.conversation.summarizer import SUMMARY_FAILED_MESSAGE
from writersroom.errors import ModelAdapterError, RosterError, SessionNotFoundError
from writersroom.events import (
    DocumentChanged,
    SessionLoaded,
    SummaryMerged,
    TitleChanged,
    TurnCompleted,
    TurnFailed,
)
from writersroom.orchestration.orchestrator import (
    AUTH_FAILURE_MESSAGE,
    USER_TIMEOUT_NOTE,
    OrchestratorState,
)


def _messages(orchestrator: Any) -> list[str]:
    return [turn.message for turn in orchestrator.conversation]


def _agent_turns(orchestrator: Any) -> list[ConversationTurn]:
    return [turn for turn in orchestrator.conversation if turn.speaker_id not in {USER_SPEAKER, "system"}]


class _ConcurrencyProbe(ScriptedAdapter):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.active = 0
        self.peak = 0

    async def generate_structured_reply(self, messages, tool_spec=None, tool_choice=None):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.01)
            return await super().generate_structured_reply(messages, tool_spec, tool_choice)
        finally:
            self.active -= 1


# ----------------------------------------------------------------------
# Basic turns
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_writer_appends_and_hands_floor_to_user(make_orchestrator, store) -> None:
    adapter = ScriptedAdapter(
        [agent_reply("writer", "Here is an opening.", action=append("It was a dark night."), usage=TokenUsage(10, 5, 15))]
    )
    orchestrator = make_orchestrator(adapter)
    completed: list[TurnCompleted] = []
    changes: list[DocumentChanged] = []
    orchestrator.events.subscribe(TurnCompleted, completed.append)
    orchestrator.events.subscribe(DocumentChanged, changes.append)
    session = await orchestrator.ensure_session()
    orchestrator.set_active_agents(["writer"])

    await orchestrator.start()
    await orchestrator.queue.join()

    assert orchestrator.document == "It was a dark night."
    assert orchestrator.state is OrchestratorState.WAITING_FOR_USER
    assert orchestrator.is_running
    [turn] = orchestrator.conversation
    assert turn.speaker_id == "writer"
    assert turn.message == "Here is an opening."
    assert not turn.is_provisional
    assert [event.agent_id for event in completed] == ["writer"]
    assert [(event.edited_by, event.action) for event in changes] == [("writer", "append")]

    [version] = store.get_document_versions(session.id)
    assert version.edited_by == "writer"
    assert version.action == "append"
    assert version.content == "It was a dark night."

    await orchestrator.aclose()
    stored = store.get_session(session.id)
    assert stored.document_content == "It was a dark night."
    assert [item.message for item in stored.conversation] == ["Here is an opening."]
    assert stored.metadata["total_tokens"] == 15
    assert stored.metadata["character_count"] == len("It was a dark night.")


@pytest.mark.asyncio
async def test_provisional_entry_is_visible_while_waiting(make_orchestrator) -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter([agent_reply("writer", "Done thinking.")], gate=gate)
    orchestrator = make_orchestrator(adapter)
    await orchestrator.ensure_session()
    orchestrator.set_active_agents(["writer"])

    await orchestrator.start()
    await asyncio.wait_for(adapter.started.wait(), 1)

    [pending] = orchestrator.conversation
    assert pending.is_provisional
    assert pending.speaker_id == "writer"
    assert orchestrator.state is OrchestratorState.AWAITING_MODEL_REPLY

    gate.set()
    await orchestrator.queue.join()

    [final] = orchestrator.conversation
    assert final.id == pending.id
    assert final.message == "Done thinking."
    assert not final.is_provisional
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_next_speaker_chain_is_followed(make_orchestrator) -> None:
    adapter = ScriptedAdapter(
        [
            agent_reply("writer", "Draft.", next_type="specific", next_agent="editor"),
            agent_reply("editor", "Tighten it.", next_type="specific", next_agent="critic"),
            agent_reply("critic", "Fine."),
        ]
    )
    orchestrator = make_orchestrator(adapter)

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()

    assert adapter.speaker_order() == ["writer", "editor", "critic"]
    assert [turn.speaker_id for turn in _agent_turns(orchestrator)] == ["writer", "editor", "critic"]
    assert orchestrator.state is OrchestratorState.WAITING_FOR_USER
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_only_one_turn_is_in_flight(make_orchestrator) -> None:
    adapter = _ConcurrencyProbe(
        [
            agent_reply("writer", "First."),
            agent_reply("critic", "Second."),
        ],
        gate=asyncio.Event(),
    )
    orchestrator = make_orchestrator(adapter)

    await orchestrator.request_agent_turn("writer")
    await asyncio.wait_for(adapter.started.wait(), 1)
    await orchestrator.submit_user_message("Editor, your view?", target_agent_id="editor")
    await orchestrator.submit_user_message("Actually, critic first.", target_agent_id="critic")
    assert [request.agent_id for request in orchestrator.queue.pending] == ["critic"]

    adapter.gate.set()
    await orchestrator.queue.join()

    assert adapter.peak == 1
    assert adapter.speaker_order() == ["writer", "critic"]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_user_message_mid_turn_takes_over_the_chain(make_orchestrator) -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter(
        [
            agent_reply("writer", "Draft.", next_type="specific", next_agent="editor"),
            agent_reply("critic", "Answering you.", next_type="specific", next_agent="editor"),
            agent_reply("editor", "Noted."),
        ],
        gate=gate,
    )
    orchestrator = make_orchestrator(adapter)

    await orchestrator.request_agent_turn("writer")
    await asyncio.wait_for(adapter.started.wait(), 1)
    await orchestrator.submit_user_message("Critic, what do you think?", target_agent_id="critic")
    gate.set()
    await orchestrator.queue.join()

    assert adapter.speaker_order() == ["writer", "critic", "editor"]
    # The interrupted turn keeps the slot its placeholder held.
    assert _messages(orchestrator) == ["Draft.", "Critic, what do you think?", "Answering you.", "Noted."]
    assert orchestrator.state is OrchestratorState.WAITING_FOR_USER
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_requested_agent_mid_turn_takes_over_the_chain(make_orchestrator) -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter(
        [
            agent_reply("writer", "Draft.", next_type="specific", next_agent="editor"),
            agent_reply("critic", "My turn."),
        ],
        gate=gate,
    )
    orchestrator = make_orchestrator(adapter)

    await orchestrator.request_agent_turn("writer")
    await asyncio.wait_for(adapter.started.wait(), 1)
    await orchestrator.request_agent_turn("critic")
    gate.set()
    await orchestrator.queue.join()

    assert adapter.speaker_order() == ["writer", "critic"]
    assert _messages(orchestrator) == ["Draft.", "My turn."]
    await orchestrator.aclose()


# ----------------------------------------------------------------------
# Document permissions and replies
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_non_editor_action_is_ignored_and_annotated(make_orchestrator, store) -> None:
    adapter = ScriptedAdapter([agent_reply("critic", "Let me fix that.", action=append("Critic prose."))])
    orchestrator = make_orchestrator(adapter)
    changes: list[DocumentChanged] = []
    orchestrator.events.subscribe(DocumentChanged, changes.append)

    await orchestrator.request_agent_turn("critic")
    await orchestrator.queue.join()

    assert orchestrator.document == ""
    assert changes == []
    [turn] = orchestrator.conversation
    assert turn.message.startswith("Let me fix that.")
    assert "[append ignored: Critic cannot edit the document]" in turn.message
    assert store.get_document_versions(orchestrator.session_id) == []
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_partial_diff_failure_is_reported(make_orchestrator) -> None:
    adapter = ScriptedAdapter(
        [
            agent_reply(
                "writer",
                "Swapping the animal.",
                action=diff(("cat", "dog"), ("zebra crossing at midnight", "nothing")),
            )
        ]
    )
    orchestrator = make_orchestrator(adapter)
    await orchestrator.edit_document("The cat sat on the mat.")

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()

    assert orchestrator.document == "The dog sat on the mat."
    [turn] = orchestrator.conversation
    assert turn.message.endswith("[1 of 2 edit(s) could not be applied]")
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_edit_request_is_shown_in_message(make_orchestrator) -> None:
    adapter = ScriptedAdapter(
        [agent_reply("editor", "Writer should trim.", action=request_edit("writer", "Cut the second paragraph."))]
    )
    orchestrator = make_orchestrator(adapter)

    await orchestrator.request_agent_turn("editor")
    await orchestrator.queue.join()

    [turn] = orchestrator.conversation
    assert "[Edit request -> writer]\nCut the second paragraph." in turn.message
    assert orchestrator.document == ""
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_unreadable_replies_fall_back_to_text(make_orchestrator) -> None:
    adapter = ScriptedAdapter(
        [
            raw_reply("{not json", output_text="I think the scene works."),
            text_reply("Plain answer"),
            agent_reply("editor", "Agreed."),
        ]
    )
    orchestrator = make_orchestrator(adapter)
    orchestrator.set_active_agents(["writer", "editor"])

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()

    assert [turn.message for turn in _agent_turns(orchestrator)] == [
        "I think the scene works.",
        "Plain answer",
        "Agreed.",
    ]
    assert len(adapter.turn_calls) == 3
    await orchestrator.aclose()


# ----------------------------------------------------------------------
# Roster changes
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_inactive_next_speaker_waits_for_user(make_orchestrator) -> None:
    adapter = ScriptedAdapter([agent_reply("writer", "Over to the critic.", next_type="specific", next_agent="critic")])
    orchestrator = make_orchestrator(adapter)
    orchestrator.set_active_agents(["writer", "editor"])

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()

    assert _messages(orchestrator)[-1] == "critic is not in the active roster."
    assert orchestrator.state is OrchestratorState.WAITING_FOR_USER
    assert len(adapter.turn_calls) == 1
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_inactive_next_speaker_in_observer_mode_continues(make_orchestrator) -> None:
    adapter = ScriptedAdapter(
        [
            agent_reply("writer", "Over to the critic.", next_type="specific", next_agent="critic"),
            agent_reply("writer", "I'll keep going then."),
        ]
    )
    orchestrator = make_orchestrator(adapter, observer_mode=True)
    orchestrator.set_active_agents(["writer", "editor"])

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()

    assert adapter.speaker_order() == ["writer", "writer"]
    assert "critic is not in the active roster." in _messages(orchestrator)
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_agent_removed_while_replying_is_discarded(make_orchestrator) -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter([agent_reply("writer", "Too late.", action=append("Lost."))], gate=gate)
    orchestrator = make_orchestrator(adapter)
    orchestrator.set_active_agents(["writer", "editor"])

    await orchestrator.request_agent_turn("writer")
    await asyncio.wait_for(adapter.started.wait(), 1)
    orchestrator.set_active_agents(["editor"])
    gate.set()
    await orchestrator.queue.join()

    assert _messages(orchestrator) == ["Writer left the conversation while replying."]
    assert orchestrator.document == ""
    assert orchestrator.state is OrchestratorState.WAITING_FOR_USER
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_queued_turn_for_removed_agent_is_reassigned(make_orchestrator) -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter([agent_reply("writer", "First."), agent_reply("editor", "Stepping in.")], gate=gate)
    orchestrator = make_orchestrator(adapter)

    await orchestrator.request_agent_turn("writer")
    await asyncio.wait_for(adapter.started.wait(), 1)
    await orchestrator.submit_user_message("Critic?", target_agent_id="critic")
    orchestrator.set_active_agents(["writer", "editor"])
    gate.set()
    await orchestrator.queue.join()

    order = adapter.speaker_order()
    assert order[0] == "writer"
    assert len(order) == 2
    assert order[1] in {"writer", "editor"}
    assert f"critic is no longer active; {order[1]} takes the turn instead." in _messages(orchestrator)
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_roster_validation(make_orchestrator) -> None:
    orchestrator = make_orchestrator()
    orchestrator.set_active_agents(["writer"])

    with pytest.raises(RosterError):
        await orchestrator.request_agent_turn("critic")
    with pytest.raises(RosterError):
        orchestrator.set_active_agents([])
    assert orchestrator.roster.active_ids == ("writer",)
    await orchestrator.aclose()


# ----------------------------------------------------------------------
# Stopping and session isolation
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_stop_discards_in_flight_reply(make_orchestrator) -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter([agent_reply("writer", "Ignored.", action=append("Ignored."))], gate=gate)
    orchestrator = make_orchestrator(adapter)
    await orchestrator.request_agent_turn("writer")
    await asyncio.wait_for(adapter.started.wait(), 1)

    orchestrator.stop()

    assert orchestrator.conversation == []
    assert orchestrator.state is OrchestratorState.IDLE
    assert not orchestrator.is_running

    gate.set()
    await orchestrator.queue.join()

    assert orchestrator.conversation == []
    assert orchestrator.document == ""
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_stop_cancels_the_turn_request(make_orchestrator) -> None:
    adapter = ScriptedAdapter(gate=asyncio.Event())
    orchestrator = make_orchestrator(adapter)
    await orchestrator.request_agent_turn("editor")
    await asyncio.wait_for(adapter.started.wait(), 1)

    orchestrator.stop()
    await asyncio.wait_for(orchestrator.queue.join(), 1)

    assert adapter.cancelled == 1
    assert orchestrator.conversation == []
    assert orchestrator.state is OrchestratorState.IDLE
    await orchestrator.aclose()


class _SharedClientAdapter(ScriptedAdapter):
    """Free-text calls wait on ``text_gate``; ``cancel_pending()`` aborts every outstanding call."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.text_gate = asyncio.Event()
        self.text_started = asyncio.Event()
        self._tasks: set[asyncio.Task[Any]] = set()

    def cancel_pending(self) -> int:
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        return len(tasks)

    async def generate_structured_reply(self, messages, tool_spec=None, tool_choice=None):
        task = asyncio.current_task()
        assert task is not None
        self._tasks.add(task)
        try:
            if tool_spec is None:
                self.text_started.set()
                await self.text_gate.wait()
            return await super().generate_structured_reply(messages, tool_spec, tool_choice)
        finally:
            self._tasks.discard(task)


@pytest.mark.asyncio
async def test_stop_leaves_running_summary_alone(make_orchestrator) -> None:
    adapter = _SharedClientAdapter(gate=asyncio.Event(), text_script=[text_reply("They counted.")])
    orchestrator = make_orchestrator(adapter, keep_recent_count=1)
    for text in ("one", "two", "three"):
        await orchestrator.submit_user_message(text)
    summary = asyncio.ensure_future(orchestrator.summarize_now())
    await asyncio.wait_for(adapter.text_started.wait(), 1)
    await orchestrator.request_agent_turn("writer")
    await asyncio.wait_for(adapter.started.wait(), 1)

    orchestrator.stop()
    adapter.text_gate.set()
    outcome = await asyncio.wait_for(summary, 1)

    assert adapter.cancelled == 1
    assert outcome is not None and not outcome.failed
    first, *rest = orchestrator.conversation
    assert first.is_summary
    assert [turn.message for turn in rest] == ["three"]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_switching_sessions_isolates_in_flight_turn(make_orchestrator, store) -> None:
    gate = asyncio.Event()
    adapter = ScriptedAdapter([agent_reply("writer", "Stale.", action=append("Stale paragraph."))], gate=gate)
    orchestrator = make_orchestrator(adapter)
    first = await orchestrator.ensure_session()
    orchestrator.set_active_agents(["writer"])

    await orchestrator.start()
    await asyncio.wait_for(adapter.started.wait(), 1)
    second = await orchestrator.new_session("Other")
    gate.set()
    await orchestrator.queue.join()
    await orchestrator.aclose()

    assert orchestrator.session_id == second.id
    assert orchestrator.document == ""
    assert orchestrator.conversation == []
    stored_first = store.get_session(first.id)
    assert stored_first.document_content == ""
    assert stored_first.conversation == []
    assert store.get_document_versions(first.id) == []
    assert store.get_document_versions(second.id) == []


# ----------------------------------------------------------------------
# Failures
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_adapter_error_stops_the_run(make_orchestrator) -> None:
    adapter = ScriptedAdapter([ModelAdapterError("boom")])
    orchestrator = make_orchestrator(adapter)
    failures: list[TurnFailed] = []
    orchestrator.events.subscribe(TurnFailed, failures.append)

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()

    assert _messages(orchestrator) == ["⚠️ Writer could not reply: boom. The conversation was stopped."]
    assert [(event.agent_id, event.error) for event in failures] == [("writer", "boom")]
    assert not orchestrator.is_running
    assert orchestrator.state is OrchestratorState.IDLE
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_auth_failure_uses_dedicated_message(make_orchestrator) -> None:
    adapter = ScriptedAdapter([ModelAdapterError("401 Unauthorized", auth_failure=True)])
    orchestrator = make_orchestrator(adapter)

    await orchestrator.request_agent_turn("editor")
    await orchestrator.queue.join()

    assert _messages(orchestrator) == [AUTH_FAILURE_MESSAGE]
    assert not orchestrator.is_running
    await orchestrator.aclose()


# ----------------------------------------------------------------------
# User input and timers
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_user_message_outside_a_run_is_answered_on_start(make_orchestrator) -> None:
    adapter = ScriptedAdapter([agent_reply("editor", "Happy to.")])
    orchestrator = make_orchestrator(adapter)

    turn = await orchestrator.submit_user_message("  Editor, please look.  ", target_agent_id="editor")
    await asyncio.sleep(0)

    assert turn is not None and turn.message == "Editor, please look."
    assert adapter.calls == []
    assert await orchestrator.submit_user_message("   ") is None

    await orchestrator.start()
    await orchestrator.queue.join()

    assert adapter.speaker_order() == ["editor"]
    assert _messages(orchestrator) == ["Editor, please look.", "Happy to."]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_user_timeout_adds_note_and_continues(make_orchestrator) -> None:
    adapter = ScriptedAdapter([agent_reply("writer", "Your move.")])
    orchestrator = make_orchestrator(adapter, user_timeout_seconds=0.02)
    orchestrator.set_active_agents(["writer"])

    await orchestrator.request_agent_turn("writer")
    await wait_until(lambda: len(adapter.turn_calls) >= 2)
    orchestrator.stop()
    await orchestrator.queue.join()

    messages = _messages(orchestrator)
    assert messages[0] == "Your move."
    assert USER_TIMEOUT_NOTE in messages
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_observer_mode_hands_turn_to_another_agent(make_orchestrator) -> None:
    adapter = ScriptedAdapter([agent_reply("writer", "Done."), agent_reply("editor", "Noted.")])
    orchestrator = make_orchestrator(adapter, observer_mode=True, observer_grace_seconds=0.02)
    orchestrator.set_active_agents(["writer", "editor"])

    await orchestrator.request_agent_turn("writer")
    await wait_until(lambda: len(adapter.turn_calls) >= 2)
    orchestrator.stop()
    await orchestrator.queue.join()

    assert adapter.speaker_order()[:2] == ["writer", "editor"]
    assert USER_TIMEOUT_NOTE not in _messages(orchestrator)
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_agent_delay_postpones_next_turn(make_orchestrator) -> None:
    adapter = ScriptedAdapter([agent_reply("writer", "Editor next.", next_type="specific", next_agent="editor")])
    orchestrator = make_orchestrator(adapter, agent_delay_seconds=0.05)

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()
    assert adapter.speaker_order() == ["writer"]

    await wait_until(lambda: len(adapter.turn_calls) == 2)
    assert adapter.speaker_order() == ["writer", "editor"]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_stop_cancels_delayed_turn(make_orchestrator) -> None:
    adapter = ScriptedAdapter([agent_reply("writer", "Editor next.", next_type="specific", next_agent="editor")])
    orchestrator = make_orchestrator(adapter, agent_delay_seconds=0.05)

    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()
    orchestrator.stop()
    await asyncio.sleep(0.1)

    assert len(adapter.turn_calls) == 1
    await orchestrator.aclose()


# ----------------------------------------------------------------------
# Summaries and titles
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_long_conversation_is_summarized(make_orchestrator) -> None:
    adapter = ScriptedAdapter(
        [
            agent_reply("writer", "Draft.", next_type="specific", next_agent="editor"),
            agent_reply("editor", "Notes.", next_type="specific", next_agent="writer"),
            agent_reply("writer", "Revised."),
        ],
        text_script=[text_reply("They drafted an opening.")],
    )
    orchestrator = make_orchestrator(adapter, auto_summarize=True, summarize_threshold=4, keep_recent_count=2)
    merged: list[SummaryMerged] = []
    orchestrator.events.subscribe(SummaryMerged, merged.append)

    await orchestrator.submit_user_message("Start a story.")
    await orchestrator.request_agent_turn("writer")
    await orchestrator.queue.join()
    await wait_until(lambda: bool(merged))

    summary, *rest = orchestrator.conversation
    assert summary.is_summary
    assert summary.summarized_turn_count == 2
    assert summary.message.startswith("📋 Summary of earlier conversation (2 turns):")
    assert [turn.message for turn in rest] == ["Notes.", "Revised."]
    assert merged[0].replaced_count == 2
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_summarize_now_failure_keeps_history(make_orchestrator) -> None:
    adapter = ScriptedAdapter(text_script=[ModelAdapterError("down")])
    orchestrator = make_orchestrator(adapter, keep_recent_count=1)
    for text in ("one", "two", "three"):
        await orchestrator.submit_user_message(text)

    outcome = await orchestrator.summarize_now()

    assert outcome is not None and outcome.failed
    assert _messages(orchestrator) == ["one", "two", "three", SUMMARY_FAILED_MESSAGE]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_summarize_now_with_nothing_to_summarize(make_orchestrator) -> None:
    adapter = ScriptedAdapter()
    orchestrator = make_orchestrator(adapter)

    assert await orchestrator.summarize_now() is None
    assert adapter.calls == []
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_long_document_gets_a_title(make_orchestrator, store) -> None:
    adapter = ScriptedAdapter(text_script=[text_reply('"The Long Night"')])
    orchestrator = make_orchestrator(adapter, auto_title=True, title_trigger_chars=10)
    titles: list[TitleChanged] = []
    orchestrator.events.subscribe(TitleChanged, titles.append)

    await orchestrator.edit_document("A story that goes on for a while.")
    await wait_until(lambda: bool(titles))

    assert titles[0].title == "The Long Night"
    assert orchestrator.session.title == "The Long Night"
    assert store.get_session(orchestrator.session_id).title == "The Long Night"
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_short_document_keeps_default_title(make_orchestrator) -> None:
    adapter = ScriptedAdapter()
    orchestrator = make_orchestrator(adapter, auto_title=True, title_trigger_chars=100)

    await orchestrator.edit_document("Short.")
    await asyncio.sleep(0.01)

    assert adapter.text_calls == []
    await orchestrator.aclose()


# ----------------------------------------------------------------------
# Documents and sessions
# ----------------------------------------------------------------------
@pytest.mark.asyncio
async def test_manual_edit_records_version(make_orchestrator, store) -> None:
    orchestrator = make_orchestrator()
    changes: list[DocumentChanged] = []
    orchestrator.events.subscribe(DocumentChanged, changes.append)

    await orchestrator.edit_document("Chapter one.")
    await orchestrator.edit_document("Chapter one.")

    assert [(event.edited_by, event.action, event.content) for event in changes] == [
        ("user", "manual", "Chapter one.")
    ]
    [version] = store.get_document_versions(orchestrator.session_id)
    assert (version.edited_by, version.action) == ("user", "manual")
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_load_session_restores_working_copy(make_orchestrator, store) -> None:
    saved = store.create_session("Saved", active_agent_ids=["editor", "ghost"], document_content="Old text.")
    store.update_session(saved.id, {"conversation": [ConversationTurn(speaker_id=USER_SPEAKER, message="Hello")]})
    orchestrator = make_orchestrator()
    loaded: list[SessionLoaded] = []
    orchestrator.events.subscribe(SessionLoaded, loaded.append)

    session = await orchestrator.load_session(saved.id)

    assert isinstance(session, Session)
    assert orchestrator.session_id == saved.id
    assert orchestrator.document == "Old text."
    assert _messages(orchestrator) == ["Hello"]
    assert orchestrator.roster.active_ids == ("editor",)
    assert [(event.session_id, event.title) for event in loaded] == [(saved.id, "Saved")]
    await orchestrator.aclose()


@pytest.mark.asyncio
async def test_deleting_current_session_resets_state(make_orchestrator, store) -> None:
    orchestrator = make_orchestrator()
    session = await orchestrator.ensure_session()
    await orchestrator.edit_document("Gone soon.")

    await orchestrator.delete_session(session.id)

    assert orchestrator.session is None
    assert orchestrator.document == ""
    with pytest.raises(SessionNotFoundError):
        store.get_session(session.id)
    await orchestrator.aclose()
    assert store.get_all_sessions() == []
