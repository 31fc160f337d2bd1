"""Event system for matrixci runs.

- events.py: Event data classes (just data, no behavior)
- observers live in ``matrixci.stdlib.observers``
"""

from .events import (
    Event,
    RunCompleted,
    RunStarted,
    RunSuperseded,
    StageCompleted,
    StageStarted,
    TaskCompleted,
    TaskFailed,
    TaskStarted,
)

RUN_EVENTS = (RunStarted, RunCompleted, RunSuperseded)
STAGE_EVENTS = (StageStarted, StageCompleted)
TASK_EVENTS = (TaskStarted, TaskCompleted, TaskFailed)

ALL_EVENTS = RUN_EVENTS + STAGE_EVENTS + TASK_EVENTS

__all__ = [
    "ALL_EVENTS",
    "Event",
    "RUN_EVENTS",
    "RunCompleted",
    "RunStarted",
    "RunSuperseded",
    "STAGE_EVENTS",
    "StageCompleted",
    "StageStarted",
    "TASK_EVENTS",
    "TaskCompleted",
    "TaskFailed",
    "TaskStarted",
]
