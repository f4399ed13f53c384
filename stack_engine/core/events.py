"""Event emitters for the stack engine."""

import logging
from abc import ABC, abstractmethod
from threading import Lock
from typing import Iterable, List

from stack_engine.core.events_model import DeploymentEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "deployment.started",
    "deployment.succeeded",
    "deployment.failed",
    "deployment.cancelled",
    "deployment.removed",
    "deployment.upgrade_started",
    "deployment.mode_changed",
    "deployment.rolled_back",
    "observer.triggered",
    "observer.escalated",
}


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[DeploymentEvent]) -> None:
        """Emit one or more events."""
        pass


class LogEventEmitter(EventEmitter):
    """Keeps emitted events in memory and writes them to the log."""

    def __init__(self):
        self.events: List[DeploymentEvent] = []
        self._lock = Lock()

    def emit(self, events: Iterable[DeploymentEvent]) -> None:
        for event in events:
            if event.event_type not in ALLOWED_EVENTS:
                raise ValueError(f"Invalid event type: {event.event_type}")
            if not event.deployment_id:
                raise ValueError("Event must have deployment_id")

            with self._lock:
                self.events.append(event)

            if event.metadata.get("severity") == "critical":
                logger.critical(f"[EVENT] {event.event_type} | deployment={event.deployment_id} | {event.metadata}")
            else:
                logger.info(f"[EVENT] {event.event_type} | deployment={event.deployment_id}")

    def of_type(self, event_type: str) -> List[DeploymentEvent]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]


class MultiEventEmitter(EventEmitter):
    """Fan-out to multiple emitters."""

    def __init__(self, emitters: Iterable[EventEmitter]):
        self._emitters = list(emitters)

    def emit(self, events: Iterable[DeploymentEvent]) -> None:
        events = list(events)
        for emitter in self._emitters:
            emitter.emit(events)


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[DeploymentEvent]) -> None:
        pass
