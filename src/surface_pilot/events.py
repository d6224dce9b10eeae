# events.py
# Lifecycle events emitted by the agent loop, and the ordered stream that
# delivers them to subscribers.
#
# Events are delivered synchronously, in emission order, to every
# subscriber in subscription order. Only done / error / stopped imply that
# the run has ended.

import logging
from collections.abc import Callable
from typing import Literal, Union

from pydantic import BaseModel, Field

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------


class StartEvent(BaseModel):
    type: Literal["start"] = "start"
    goal: str


class StepEvent(BaseModel):
    type: Literal["step"] = "step"
    ordinal: int
    thought: str
    action: str
    params: dict = Field(default_factory=dict)


class GateEvent(BaseModel):
    type: Literal["gate"] = "gate"
    ordinal: int
    allowed: bool
    reason: str = ""
    needs_confirmation: bool = False
    confirm_reason: str = ""


class RetryEvent(BaseModel):
    type: Literal["retry"] = "retry"
    stage: Literal["perceive", "decide", "execute"]
    attempt: int
    message: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    summary: str
    step_count: int


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    step_count: int


class StoppedEvent(BaseModel):
    type: Literal["stopped"] = "stopped"
    reason: str
    step_count: int


Event = Union[
    StartEvent, StepEvent, GateEvent, RetryEvent, DoneEvent, ErrorEvent, StoppedEvent
]
Subscriber = Callable[[Event], None]

TERMINAL_EVENT_TYPES = frozenset({"done", "error", "stopped"})


# ---------------------------------------------------------------------------
# Stream
# ---------------------------------------------------------------------------


class EventStream:
    """Ordered fan-out of lifecycle events with a per-run log."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._log: list[Event] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that removes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, event: Event) -> None:
        self._log.append(event)
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                LOGGER.exception("event subscriber failed on %s event", event.type)

    def reset(self) -> None:
        """Forget the previous run's events. Subscribers are kept."""
        self._log.clear()

    @property
    def events(self) -> list[Event]:
        """Shallow copy of every event emitted since the last reset."""
        return list(self._log)
