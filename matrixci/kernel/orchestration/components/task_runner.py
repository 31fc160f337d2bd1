"""Task runner: one task on one leased worker.

This module provides the TaskRunner class that handles a single task with its
full lifecycle:

- lease a worker whose labels satisfy the task's predicate
- unpack the task's input stashes into a fresh workspace
- run the sub-steps in order, halting at the first failure
- collect the output stashes and write them to the artifact store

The worker lease is released on every exit path, and the workspace is
removed afterwards unless ``keep_workspaces`` is set.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from matrixci.kernel.domain.pipeline import OutputStash, StepKind, SubStep, TaskSpec
from matrixci.kernel.domain.run import Run, StepResult, StepStatus, TaskResult, TaskStatus
from matrixci.kernel.exceptions import (
    ConfigurationError,
    MatrixCIError,
    NoEligibleWorkerError,
    RetryExhaustedError,
)
from matrixci.kernel.logging import get_logger
from matrixci.kernel.orchestration.components.execution_coordinator import ExecutionCoordinator
from matrixci.kernel.orchestration.events import TaskCompleted, TaskFailed, TaskStarted
from matrixci.kernel.ports.task_executor import CommandSpec, ExecutionOutcome
from matrixci.kernel.utils.paths import safe_name
from matrixci.kernel.utils.templates import render
from matrixci.kernel.utils.timer import Timer
from matrixci.kernel.validation.retry import with_retry

if TYPE_CHECKING:
    from matrixci.kernel.domain.branch import PublishPolicy
    from matrixci.kernel.domain.labels import Worker
    from matrixci.kernel.orchestration.components.worker_pool import WorkerPool
    from matrixci.kernel.ports.approval import ApprovalGate
    from matrixci.kernel.ports.artifact_store import ArtifactStore
    from matrixci.kernel.ports.publisher import Publisher
    from matrixci.kernel.ports.source import SourceFetcher
    from matrixci.kernel.ports.task_executor import TaskExecutor

logger = get_logger(__name__)


class CommandFailedError(MatrixCIError):
    """A command step exited non-zero."""

    def __init__(self, step: str, outcome: ExecutionOutcome) -> None:
        super().__init__(f"Step '{step}' exited with code {outcome.exit_code}")
        self.step = step
        self.outcome = outcome


class _TaskAbort(MatrixCIError):
    """Internal: stop the task outside of a sub-step (inputs or outputs)."""

    def __init__(self, where: str, reason: str) -> None:
        super().__init__(reason)
        self.where = where


# ----------------------------------------------------------------------
# Workspace helpers (blocking, run in a thread)
# ----------------------------------------------------------------------


def _clear_dir(path: Path) -> None:
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


def _write_files(workdir: Path, files: dict[str, bytes]) -> None:
    for rel_path, content in files.items():
        target = workdir / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)


def _glob_files(workdir: Path, patterns: tuple[str, ...]) -> set[Path]:
    return {p for pattern in patterns for p in workdir.glob(pattern) if p.is_file()}


def _collect(workdir: Path, output: OutputStash, baseline: dict[str, bytes]) -> dict[str, bytes]:
    selected = _glob_files(workdir, output.includes) - _glob_files(workdir, output.excludes)
    files: dict[str, bytes] = {}
    for path in sorted(selected):
        rel_path = path.relative_to(workdir).as_posix()
        content = path.read_bytes()
        # unpacked inputs the task left untouched are not part of its outputs
        if baseline.get(rel_path) == content:
            continue
        files[rel_path] = content
    return files


class TaskRunner:
    """Runs single tasks for the stage executor.

    ``run_task`` never raises for task-level failures: a failing step, a
    missing input stash, an unsatisfiable label predicate or an empty output
    stash all end in a FAILED :class:`TaskResult`. Only cancellation (run
    timeout) propagates.

    Parameters
    ----------
    executor : TaskExecutor
        Runs command steps on the leased worker
    store : ArtifactStore
        Source of input stashes and destination of outputs
    pool : WorkerPool
        Workers to lease from
    source : SourceFetcher | None
        Required by checkout steps
    approval : ApprovalGate | None
        Asked by approval steps; without one every run is approved
    publisher : Publisher | None
        Required by publish steps on publishable branches
    publish_policy : PublishPolicy | None
        Branch predicate for publish steps; without one nothing is published
    coordinator : ExecutionCoordinator | None
        Event delivery and step environments
    workspace_root : Path | None
        Parent of per-task workspaces (default: system temp dir)
    keep_workspaces : bool
        Leave workspaces on disk for debugging
    """

    def __init__(
        self,
        executor: TaskExecutor,
        store: ArtifactStore,
        pool: WorkerPool,
        *,
        source: SourceFetcher | None = None,
        approval: ApprovalGate | None = None,
        publisher: Publisher | None = None,
        publish_policy: PublishPolicy | None = None,
        coordinator: ExecutionCoordinator | None = None,
        workspace_root: str | Path | None = None,
        keep_workspaces: bool = False,
    ) -> None:
        self.executor = executor
        self.store = store
        self.pool = pool
        self.source = source
        self.approval = approval
        self.publisher = publisher
        self.publish_policy = publish_policy
        self.coordinator = coordinator or ExecutionCoordinator()
        self.workspace_root = (
            Path(workspace_root)
            if workspace_root is not None
            else Path(tempfile.gettempdir()) / "matrixci"
        )
        self.keep_workspaces = keep_workspaces

    async def run_task(self, run: Run, stage: str, task: TaskSpec) -> TaskResult:
        """Run ``task`` of ``run`` to a terminal result."""
        result = TaskResult(name=task.name, status=TaskStatus.RUNNING)
        timer = Timer()

        try:
            async with self.pool.lease(task.labels, holder=f"{run.run_id}/{task.name}") as handle:
                result.worker_id = handle.worker_id
                await self.coordinator.notify(
                    TaskStarted(
                        run_id=run.run_id, stage=stage, name=task.name, worker_id=handle.worker_id
                    )
                )
                workdir = await asyncio.to_thread(self._make_workspace, run, task)
                try:
                    baseline = await self._unpack_inputs(run, task, workdir)
                    await self._run_steps(run, task, handle.worker, workdir, result)
                    if not result.failed:
                        result.outputs = await self._collect_outputs(run, task, workdir, baseline)
                finally:
                    if not self.keep_workspaces:
                        await asyncio.shield(
                            asyncio.to_thread(shutil.rmtree, workdir, ignore_errors=True)
                        )
        except NoEligibleWorkerError as e:
            self._fail(result, None, str(e))
        except _TaskAbort as e:
            self._fail(result, e.where, str(e))
        except (MatrixCIError, OSError) as e:
            self._fail(result, None, str(e))

        if result.status == TaskStatus.RUNNING:
            result.status = TaskStatus.SUCCEEDED
        result.duration_ms = timer.duration_ms

        if result.failed:
            await self.coordinator.notify(
                TaskFailed(
                    run_id=run.run_id,
                    stage=stage,
                    name=task.name,
                    error=result.error or "failed",
                    step=result.failed_step,
                )
            )
        else:
            await self.coordinator.notify(
                TaskCompleted(
                    run_id=run.run_id,
                    stage=stage,
                    name=task.name,
                    duration_ms=result.duration_ms,
                    outputs=result.outputs,
                )
            )
        return result

    @staticmethod
    def _fail(result: TaskResult, step: str | None, error: str) -> None:
        result.status = TaskStatus.FAILED
        result.failed_step = step
        result.error = error

    # ------------------------------------------------------------------
    # Workspace
    # ------------------------------------------------------------------

    def _make_workspace(self, run: Run, task: TaskSpec) -> Path:
        parent = self.workspace_root / safe_name(run.run_id)
        parent.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{safe_name(task.name)}-", dir=parent))

    async def _unpack_inputs(self, run: Run, task: TaskSpec, workdir: Path) -> dict[str, bytes]:
        baseline: dict[str, bytes] = {}
        for stash in task.inputs:
            try:
                files = dict(await self.store.get(run.run_id, stash))
            except MatrixCIError as e:
                raise _TaskAbort(f"unstash:{stash}", str(e)) from e
            await asyncio.to_thread(_write_files, workdir, files)
            baseline.update(files)
            logger.debug(
                "Unstashed '{stash}' ({count} files) for {task}",
                stash=stash,
                count=len(files),
                task=task.name,
            )
        return baseline

    async def _collect_outputs(
        self, run: Run, task: TaskSpec, workdir: Path, baseline: dict[str, bytes]
    ) -> tuple[str, ...]:
        written: list[str] = []
        for output in task.outputs:
            files = await asyncio.to_thread(_collect, workdir, output, baseline)
            if not files:
                raise _TaskAbort(
                    f"stash:{output.name}",
                    f"output stash '{output.name}' matched no files "
                    f"(includes: {', '.join(output.includes)})",
                )
            try:
                await self.store.put(run.run_id, output.name, files, producer=task.name)
            except MatrixCIError as e:
                raise _TaskAbort(f"stash:{output.name}", str(e)) from e
            written.append(output.name)
        return tuple(written)

    # ------------------------------------------------------------------
    # Sub-steps
    # ------------------------------------------------------------------

    async def _run_steps(
        self, run: Run, task: TaskSpec, worker: Worker, workdir: Path, result: TaskResult
    ) -> None:
        for step in task.steps:
            if result.failed:
                result.steps.append(StepResult(name=step.name, status=StepStatus.SKIPPED))
                continue

            timer = Timer()
            step_result = await self._run_step(run, task, worker, workdir, step)
            step_result.duration_ms = timer.duration_ms
            result.steps.append(step_result)

            if step_result.status == StepStatus.FAILED:
                self._fail(result, step.name, step_result.error or "step failed")
                logger.info(
                    "Task '{task}' halted at step '{step}': {error}",
                    task=task.name,
                    step=step.name,
                    error=result.error,
                )

    async def _run_step(
        self, run: Run, task: TaskSpec, worker: Worker, workdir: Path, step: SubStep
    ) -> StepResult:
        handlers = {
            StepKind.COMMAND: self._run_command,
            StepKind.CHECKOUT: self._run_checkout,
            StepKind.APPROVAL: self._run_approval,
            StepKind.PUBLISH: self._run_publish,
        }
        try:
            return await handlers[step.kind](run, task, worker, workdir, step)
        except RetryExhaustedError as e:
            if isinstance(e.last_error, CommandFailedError):
                outcome = e.last_error.outcome
                return StepResult(
                    name=step.name,
                    status=StepStatus.FAILED,
                    exit_code=outcome.exit_code,
                    logs=outcome.logs,
                    error=str(e),
                )
            return StepResult(name=step.name, status=StepStatus.FAILED, error=str(e))
        except CommandFailedError as e:
            return StepResult(
                name=step.name,
                status=StepStatus.FAILED,
                exit_code=e.outcome.exit_code,
                logs=e.outcome.logs,
                error=str(e),
            )
        except Exception as e:
            logger.debug("Step '{step}' raised {error!r}", step=step.name, error=e)
            return StepResult(name=step.name, status=StepStatus.FAILED, error=str(e))

    async def _run_command(
        self, run: Run, task: TaskSpec, worker: Worker, workdir: Path, step: SubStep
    ) -> StepResult:
        assert step.run is not None
        spec = CommandSpec(
            task_name=task.name,
            step_name=step.name,
            command=step.run,
            env=self.coordinator.step_env(run, task, worker, step),
            workdir=workdir,
            worker_id=worker.worker_id,
            worker_labels=tuple(worker.labels),
        )

        async def attempt() -> ExecutionOutcome:
            outcome = await self.executor.execute(spec)
            if not outcome.succeeded:
                raise CommandFailedError(step.name, outcome)
            return outcome

        if task.retry is None:
            outcome = await attempt()
        else:
            outcome = await with_retry(
                attempt, task.retry, operation=f"{task.name}/{step.name}"
            )
        return StepResult(
            name=step.name,
            status=StepStatus.SUCCEEDED,
            exit_code=outcome.exit_code,
            logs=outcome.logs,
        )

    async def _run_checkout(
        self, run: Run, task: TaskSpec, worker: Worker, workdir: Path, step: SubStep
    ) -> StepResult:
        assert step.checkout is not None
        source = self.source
        if source is None:
            raise ConfigurationError(task.name, "checkout step requires a source fetcher")

        tree = await with_retry(
            lambda: source.fetch(run.branch, run.requested_commit, workdir),
            step.checkout,
            cleanup=lambda: asyncio.to_thread(_clear_dir, workdir),
            operation="checkout",
        )
        if run.commit is None:
            run.resolve_commit(tree.commit)
        elif run.commit != tree.commit:
            raise ConfigurationError(
                task.name, f"checked out {tree.commit} but run is pinned to {run.commit}"
            )
        logger.info("Checked out {commit} for run '{run_id}'", commit=tree.commit, run_id=run.run_id)
        return StepResult(
            name=step.name, status=StepStatus.SUCCEEDED, logs=f"checked out {tree.commit}"
        )

    async def _run_approval(
        self, run: Run, task: TaskSpec, worker: Worker, workdir: Path, step: SubStep
    ) -> StepResult:
        if self.approval is None:
            return StepResult(name=step.name, status=StepStatus.SUCCEEDED, logs="no approval gate")
        if not await self.approval.approve(run, run.author):
            return StepResult(
                name=step.name,
                status=StepStatus.FAILED,
                error=f"run '{run.run_id}' was not approved (author: {run.author or 'unknown'})",
            )
        return StepResult(name=step.name, status=StepStatus.SUCCEEDED, logs="approved")

    async def _run_publish(
        self, run: Run, task: TaskSpec, worker: Worker, workdir: Path, step: SubStep
    ) -> StepResult:
        assert step.publish is not None
        if self.publish_policy is None or not self.publish_policy.allows(run.branch):
            logger.info(
                "Skipping publish of '{stash}': branch '{branch}' is not publishable",
                stash=step.publish.stash,
                branch=run.branch,
            )
            return StepResult(
                name=step.name,
                status=StepStatus.SKIPPED,
                logs=f"publishing disabled on branch '{run.branch}'",
            )
        if self.publisher is None:
            raise ConfigurationError(task.name, "publish step requires a publisher")

        destination = render(
            step.publish.destination,
            {"branch": run.branch, "commit": run.commit or "", "sequence": str(run.sequence)},
            f"{task.name}/{step.name}",
        )
        entry = await self.store.entry(run.run_id, step.publish.stash)
        await self.publisher.upload(entry, destination)
        logger.info(
            "Published '{stash}' ({count} files) to {destination}",
            stash=entry.stash,
            count=len(entry.files),
            destination=destination,
        )
        return StepResult(
            name=step.name,
            status=StepStatus.SUCCEEDED,
            logs=f"published {len(entry.files)} files to {destination}",
        )
