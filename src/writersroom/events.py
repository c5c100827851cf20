"""Event bus used by the orchestrator to notify a front-end.

Front-ends (a GUI, the headless CLI, tests) subscribe to the event types they
care about; the orchestrator publishes without knowing who listens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for everything published on the :class:`EventBus`."""


# Published on every enqueue/dequeue; not worth a debug line each time.
_UNLOGGED_EVENTS: tuple[str, ...] = ("QueueLengthChanged", "ConversationChanged")


# =============================================================================
# Orchestrator events
# =============================================================================


@dataclass(slots=True)
class StateChanged(Event):
    """Emitted on every orchestrator state transition.

    Attributes:
        state: New state value (see ``OrchestratorState``).
        previous: State before the transition.
        agent_id: Agent whose turn drives the transition, when any.
    """

    state: str
    previous: str
    agent_id: str | None = None


@dataclass(slots=True)
class QueueLengthChanged(Event):
    """Emitted whenever the number of pending turn requests changes."""

    pending: int


@dataclass(slots=True)
class ConversationChanged(Event):
    """Emitted after any change to the conversation log.

    Attributes:
        session_id: Session owning the log.
        length: Number of entries after the change.
    """

    session_id: str
    length: int


@dataclass(slots=True)
class DocumentChanged(Event):
    """Emitted when the shared document content changes.

    Attributes:
        session_id: Session owning the document.
        content: Full document text after the change.
        edited_by: Agent id or ``"user"``.
        action: ``append``, ``diff`` or ``manual``.
    """

    session_id: str
    content: str
    edited_by: str
    action: str


@dataclass(slots=True)
class TurnCompleted(Event):
    """Emitted when an agent turn has been committed to the log."""

    session_id: str
    agent_id: str
    turn_id: str
    applied_edits: int = 0
    failed_edits: int = 0


@dataclass(slots=True)
class TurnFailed(Event):
    """Emitted when an agent turn fails and the run stops."""

    session_id: str
    agent_id: str
    error: str


@dataclass(slots=True)
class SummaryMerged(Event):
    """Emitted when a summary entry is spliced into the log."""

    session_id: str
    summary_id: str
    replaced_count: int


@dataclass(slots=True)
class SessionLoaded(Event):
    session_id: str
    title: str


@dataclass(slots=True)
class TitleChanged(Event):
    session_id: str
    title: str


# =============================================================================
# Bus
# =============================================================================


class _Subscription:
    """One registered handler.

    Bound methods are stored as :class:`WeakMethod` so an abandoned listener
    object drops out of the bus on its own; other callables are kept alive.
    """

    __slots__ = ("_target", "_weak")

    def __init__(self, handler: Handler[Any]) -> None:
        self._weak = _is_bound_method(handler)
        self._target: Any = WeakMethod(handler) if self._weak else handler  # type: ignore[arg-type]

    @property
    def alive(self) -> bool:
        return self.handler is not None

    @property
    def handler(self) -> Handler[Any] | None:
        return self._target() if self._weak else self._target

    def is_for(self, handler: Handler[Any]) -> bool:
        current = self.handler
        return current is not None and current == handler


class EventBus(Generic[E]):
    """Synchronous publish/subscribe keyed by the exact event class.

    Handlers run in registration order on the publishing thread; one failing
    handler is logged and does not stop the rest. Use from the event loop
    thread only.
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: Dict[type[Event], List[_Subscription]] = {}

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler``; registering it twice means two calls per event."""

        self._subscriptions.setdefault(event_type, []).append(_Subscription(handler))
        logger.debug("%s subscribed to %s", _describe(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        subscriptions = self._subscriptions.get(event_type, [])
        match = next((item for item in subscriptions if item.is_for(handler)), None)
        if match is None:
            return
        subscriptions.remove(match)
        logger.debug("%s unsubscribed from %s", _describe(handler), event_type.__name__)

    def publish(self, event: E) -> None:
        event_type = type(event)
        subscriptions = self._subscriptions.get(event_type)
        if not subscriptions:
            return
        if event_type.__name__ not in _UNLOGGED_EVENTS:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(subscriptions))

        # Iterate over a copy: handlers may unsubscribe themselves.
        for subscription in tuple(subscriptions):
            handler = subscription.handler
            if handler is None:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("%s failed while handling %s", _describe(handler), event_type.__name__)

        subscriptions[:] = [item for item in subscriptions if item.alive]

    def clear(self) -> None:
        self._subscriptions.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Live registrations for ``event_type``, or for every type when omitted."""

        if event_type is None:
            groups = list(self._subscriptions.values())
        else:
            groups = [self._subscriptions.get(event_type, [])]
        return sum(1 for group in groups for item in group if item.alive)


def _is_bound_method(handler: Any) -> bool:
    return getattr(handler, "__self__", None) is not None and hasattr(handler, "__func__")


def _describe(handler: Any) -> str:
    if _is_bound_method(handler):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "StateChanged",
    "QueueLengthChanged",
    "ConversationChanged",
    "DocumentChanged",
    "TurnCompleted",
    "TurnFailed",
    "SummaryMerged",
    "SessionLoaded",
    "TitleChanged",
]
