"""Domain model for pipeline runs.

A :class:`Run` is one execution of the pipeline for a branch and commit. The
stage executor mutates it as stages complete; once it reaches a terminal
status it is never changed again.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

from matrixci.kernel.exceptions import OrchestratorError, SupersededError

SUPERSEDED = "superseded"


class RunStatus(StrEnum):
    """Lifecycle status of a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED)


class StageStatus(StrEnum):
    """Lifecycle status of a stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class TaskStatus(StrEnum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


class StepStatus(StrEnum):
    """Outcome of one sub-step."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class StepResult:
    name: str
    status: StepStatus
    exit_code: int | None = None
    logs: str = ""
    duration_ms: float = 0.0
    error: str | None = None


@dataclass(slots=True)
class TaskResult:
    """Terminal record of a task, including which worker ran it."""

    name: str
    status: TaskStatus = TaskStatus.PENDING
    worker_id: str | None = None
    steps: list[StepResult] = field(default_factory=list)
    outputs: tuple[str, ...] = ()
    failed_step: str | None = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == TaskStatus.FAILED


@dataclass(slots=True)
class StageResult:
    name: str
    status: StageStatus = StageStatus.PENDING
    tasks: dict[str, TaskResult] = field(default_factory=dict)
    first_failure: str | None = None
    duration_ms: float = 0.0

    @property
    def failed_tasks(self) -> list[TaskResult]:
        return [t for t in self.tasks.values() if t.failed]

    def record(self, result: TaskResult) -> None:
        """Store a task's terminal result, remembering which task failed first."""
        self.tasks[result.name] = result
        if result.failed and self.first_failure is None:
            self.first_failure = result.name


@dataclass(slots=True)
class RunResult:
    """Externally observable outcome of a run."""

    run_id: str
    branch: str
    sequence: int
    status: RunStatus
    commit: str | None = None
    reason: str | None = None
    failed_stage: str | None = None
    failed_task: str | None = None
    failed_step: str | None = None
    superseded_by: str | None = None
    stages: dict[str, StageResult] = field(default_factory=dict)
    duration_ms: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def superseded(self) -> bool:
        return self.status == RunStatus.ABORTED and self.reason == SUPERSEDED

    def raise_for_status(self) -> None:
        """Raise unless the run succeeded.

        Raises
        ------
        SupersededError
            If a newer run of the branch took over
        OrchestratorError
            If the run failed or was aborted for another reason
        """
        if self.superseded:
            raise SupersededError(self.run_id, self.superseded_by)
        if not self.succeeded:
            where = "/".join(p for p in (self.failed_stage, self.failed_task, self.failed_step) if p)
            detail = f" at {where}" if where else ""
            raise OrchestratorError(
                f"Run '{self.run_id}' {self.status}{detail}: {self.reason or 'no reason'}"
            )


@dataclass(slots=True)
class Run:
    """One execution of the pipeline for a branch."""

    branch: str
    sequence: int
    requested_commit: str | None = None
    author: str | None = None
    status: RunStatus = RunStatus.PENDING
    reason: str | None = None
    commit: str | None = None
    superseded_by: str | None = None
    stages: dict[str, StageResult] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None

    @property
    def run_id(self) -> str:
        return f"{self.branch}#{self.sequence}"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def superseded(self) -> bool:
        return self.status == RunStatus.ABORTED and self.reason == SUPERSEDED

    def resolve_commit(self, commit: str) -> None:
        """Record the commit Initialize checked out. Can only be set once."""
        if self.commit is not None:
            raise OrchestratorError(
                f"Run '{self.run_id}' commit already resolved to '{self.commit}'"
            )
        self.commit = commit

    def start(self) -> None:
        if self.status != RunStatus.PENDING:
            raise OrchestratorError(f"Run '{self.run_id}' cannot start from {self.status}")
        self.status = RunStatus.RUNNING
        self.started_at = time.time()

    def finish(self, status: RunStatus, reason: str | None = None) -> bool:
        """Move to a terminal status. Returns False if the run was already terminal."""
        if not status.is_terminal:
            raise OrchestratorError(f"{status} is not a terminal run status")
        if self.is_terminal:
            return False
        self.status = status
        self.reason = reason
        self.completed_at = time.time()
        return True

    def supersede(self, by: str | None = None) -> bool:
        """Abort as superseded by run ``by``. Returns False if already terminal."""
        if not self.finish(RunStatus.ABORTED, SUPERSEDED):
            return False
        self.superseded_by = by
        return True

    def result(self) -> RunResult:
        failed_stage = failed_task = failed_step = None
        for stage in self.stages.values():
            if stage.status == StageStatus.FAILED:
                failed_stage = stage.name
                if stage.first_failure is not None:
                    failed_task = stage.first_failure
                    failed_step = stage.tasks[failed_task].failed_step
                break

        duration_ms = None
        if self.started_at is not None and self.completed_at is not None:
            duration_ms = (self.completed_at - self.started_at) * 1000

        return RunResult(
            run_id=self.run_id,
            branch=self.branch,
            sequence=self.sequence,
            status=self.status,
            commit=self.commit,
            reason=self.reason,
            failed_stage=failed_stage,
            failed_task=failed_task,
            failed_step=failed_step,
            superseded_by=self.superseded_by,
            stages=dict(self.stages),
            duration_ms=duration_ms,
        )
