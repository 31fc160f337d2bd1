"""Ready-made observers for run events.

Usage::

    from matrixci.drivers.observer_manager import LocalObserverManager
    from matrixci.stdlib.observers import CollectingObserver, LoggingObserver

    manager = LocalObserverManager()
    manager.register(LoggingObserver(), observer_id="log")
    collector = CollectingObserver()
    manager.register(collector, event_types=(TaskStarted, TaskCompleted, TaskFailed))
"""

from __future__ import annotations

from typing import TypeVar

from matrixci.kernel.logging import get_logger
from matrixci.kernel.orchestration.events.events import (
    Event,
    RunCompleted,
    StageCompleted,
    TaskFailed,
)

logger = get_logger(__name__)

E = TypeVar("E", bound=Event)


class LoggingObserver:
    """Logs every event's ``log_message()``.

    Failures are logged at WARNING (tasks) or ERROR (runs and stages);
    supersession is not a failure and stays at INFO.
    """

    async def handle(self, event: Event) -> None:
        level = "INFO"
        if isinstance(event, TaskFailed):
            level = "WARNING"
        elif isinstance(event, StageCompleted | RunCompleted) and event.status == "failed":
            level = "ERROR"
        logger.log(level, event.log_message())


class CollectingObserver:
    """Keeps every received event in order, for tests and reports."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def handle(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)
