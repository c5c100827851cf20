"""Conversation data model, history log, speaker resolution and the turn queue."""

from .history import ConversationLog
from .models import (
    SYSTEM_SPEAKER,
    USER_SPEAKER,
    Agent,
    AppendAction,
    ConversationTurn,
    DiffEdit,
    DiffSetAction,
    NextSpeaker,
    RequestEditAction,
    Session,
    TurnRequest,
)
from .speaker import SpeakerDecision, SpeakerResolver
from .turn_queue import TurnQueue

__all__ = [
    "SYSTEM_SPEAKER",
    "USER_SPEAKER",
    "Agent",
    "AppendAction",
    "ConversationLog",
    "ConversationTurn",
    "DiffEdit",
    "DiffSetAction",
    "NextSpeaker",
    "RequestEditAction",
    "Session",
    "SpeakerDecision",
    "SpeakerResolver",
    "TurnQueue",
    "TurnRequest",
]
