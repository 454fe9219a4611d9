"""Structured job events and the channel that delivers them to the boundary."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Union

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from .base import JobError, JobState

LOG = logging.getLogger(__name__)

DEFAULT_BACKLOG = 10_000


@dataclass(frozen=True)
class JobProgressEvent:
    """A running job made progress."""

    type: ClassVar[str] = "job_progress"

    job_id: str
    progress: float

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "job_id": self.job_id, "progress": self.progress}


@dataclass(frozen=True)
class JobCompletedEvent:
    """A job reached a terminal state."""

    type: ClassVar[str] = "job_completed"

    job_id: str
    state: JobState
    result: Path | None = None
    error: JobError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "job_id": self.job_id,
            "state": self.state.value,
            "result": str(self.result) if self.result else None,
            "error": self.error.to_dict() if self.error else None,
        }


JobEvent = Union[JobProgressEvent, JobCompletedEvent]


class EventBus:
    """
    Fan events out to subscribers and buffer them for polling.

    Events published from one thread reach every consumer in publish order.
    The polling backlog is bounded; the oldest events are dropped first.
    """

    def __init__(self, backlog: int = DEFAULT_BACKLOG) -> None:
        self._subscribers: list[Callable[[JobEvent], None]] = []
        self._backlog: deque[JobEvent] = deque(maxlen=backlog)
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[JobEvent], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: JobEvent) -> None:
        """Deliver ``event`` to subscribers and the polling backlog."""
        with self._lock:
            self._backlog.append(event)
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                LOG.exception("Event subscriber %r failed on %s", callback, event.type)

    def poll(self, max_events: int | None = None) -> list[JobEvent]:
        """Remove and return buffered events, oldest first."""
        with self._lock:
            count = len(self._backlog) if max_events is None else min(max_events, len(self._backlog))
            return [self._backlog.popleft() for _ in range(count)]
