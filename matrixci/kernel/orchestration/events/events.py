"""Simple event data classes emitted while a run executes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event.

        Override in subclasses to provide custom formatting.
        """
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Run events
@dataclass(slots=True)
class RunStarted(Event):
    """A run was admitted and started executing."""

    run_id: str
    branch: str
    sequence: int
    total_stages: int

    def log_message(self) -> str:
        return f"Run '{self.run_id}' started ({self.total_stages} stages)"


@dataclass(slots=True)
class RunCompleted(Event):
    """A run reached a terminal status (succeeded, failed or aborted)."""

    run_id: str
    status: str
    reason: str | None = None
    duration_ms: float | None = None

    def log_message(self) -> str:
        reason = f" ({self.reason})" if self.reason else ""
        return f"Run '{self.run_id}' finished: {self.status}{reason}"


@dataclass(slots=True)
class RunSuperseded(Event):
    """An older run of a branch was aborted by a newer one passing a checkpoint."""

    run_id: str
    superseded_by: str
    checkpoint: int

    def log_message(self) -> str:
        return (
            f"Run '{self.run_id}' superseded by '{self.superseded_by}' "
            f"at checkpoint {self.checkpoint}"
        )


# Stage events
@dataclass(slots=True)
class StageStarted(Event):
    run_id: str
    name: str
    index: int
    tasks: tuple[str, ...] = ()

    def log_message(self) -> str:
        return f"Stage '{self.name}' started with {len(self.tasks)} task(s)"


@dataclass(slots=True)
class StageCompleted(Event):
    """A stage barrier released; ``status`` is succeeded or failed."""

    run_id: str
    name: str
    index: int
    status: str
    duration_ms: float
    failed_tasks: tuple[str, ...] = ()

    def log_message(self) -> str:
        failed = f", failed: {', '.join(self.failed_tasks)}" if self.failed_tasks else ""
        return (
            f"Stage '{self.name}' {self.status} in {self.duration_ms / 1000:.2f}s{failed}"
        )


# Task events
@dataclass(slots=True)
class TaskStarted(Event):
    run_id: str
    stage: str
    name: str
    worker_id: str

    def log_message(self) -> str:
        return f"Task '{self.name}' started on worker '{self.worker_id}'"


@dataclass(slots=True)
class TaskCompleted(Event):
    run_id: str
    stage: str
    name: str
    duration_ms: float
    outputs: tuple[str, ...] = ()

    def log_message(self) -> str:
        return f"Task '{self.name}' completed in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class TaskFailed(Event):
    """A task failed; ``step`` is the sub-step that failed, if any ran."""

    run_id: str
    stage: str
    name: str
    error: str
    step: str | None = None

    def log_message(self) -> str:
        where = f" at step '{self.step}'" if self.step else ""
        return f"Task '{self.name}' failed{where}: {self.error}"
