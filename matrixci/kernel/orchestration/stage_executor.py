"""Stage graph executor.

Runs the stages of a run strictly in order. Within a stage every task is
started at once and the stage only completes when *all* of them reached a
terminal status (barrier). A failing task does not cancel its siblings:
they drain, and the run fails after the barrier, skipping the remaining
stages. Each checkpointed stage first passes the concurrency gate, which is
where a superseded run stops; an exclusive stage (Deploy) is entered by one
run of a branch at a time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from typing import TYPE_CHECKING

from matrixci.kernel.domain.pipeline import StageSpec, TaskSpec
from matrixci.kernel.domain.run import (
    Run,
    RunResult,
    RunStatus,
    StageResult,
    StageStatus,
    TaskResult,
    TaskStatus,
)
from matrixci.kernel.logging import get_logger
from matrixci.kernel.orchestration.components.execution_coordinator import ExecutionCoordinator
from matrixci.kernel.orchestration.events import (
    RunCompleted,
    RunStarted,
    StageCompleted,
    StageStarted,
)
from matrixci.kernel.utils.timer import Timer

if TYPE_CHECKING:
    from matrixci.kernel.orchestration.components.concurrency_gate import ConcurrencyGate
    from matrixci.kernel.orchestration.components.task_runner import TaskRunner

logger = get_logger(__name__)

TIMEOUT_REASON = "timeout"


class StageExecutor:
    """Executes an ordered tuple of stages for one run.

    Parameters
    ----------
    task_runner : TaskRunner
        Runs each task on a leased worker
    gate : ConcurrencyGate | None
        Checkpoint state shared by runs of the same branch; None disables
        supersession
    coordinator : ExecutionCoordinator | None
        Event delivery
    run_timeout : float | None
        Whole-run deadline in seconds; on expiry in-flight tasks are
        cancelled, recorded as failed, and the run fails with reason
        ``"timeout"``

    Examples
    --------
    Example usage::

        executor = StageExecutor(TaskRunner(shell, store, pool), gate)
        result = await executor.run_stages(run, stages)
        if result.superseded:
            ...
    """

    def __init__(
        self,
        task_runner: TaskRunner,
        gate: ConcurrencyGate | None = None,
        coordinator: ExecutionCoordinator | None = None,
        run_timeout: float | None = None,
    ) -> None:
        self.task_runner = task_runner
        self.gate = gate
        self.coordinator = coordinator or task_runner.coordinator
        self.run_timeout = run_timeout

    async def run_stages(self, run: Run, stages: Iterable[StageSpec]) -> RunResult:
        """Run ``stages`` in order and return the run's terminal result.

        The run must have been admitted to the gate (when one is set).
        """
        stages = tuple(stages)
        if run.status == RunStatus.PENDING:
            run.start()

        logger.info(
            "Run '{run_id}' starting {count} stage(s)", run_id=run.run_id, count=len(stages)
        )
        await self.coordinator.notify(
            RunStarted(
                run_id=run.run_id,
                branch=run.branch,
                sequence=run.sequence,
                total_stages=len(stages),
            )
        )

        try:
            async with asyncio.timeout(self.run_timeout):
                await self._run_all(run, stages)
        except TimeoutError:
            logger.error(
                "Run '{run_id}' exceeded its {timeout}s deadline",
                run_id=run.run_id,
                timeout=self.run_timeout,
            )
            for stage in stages:
                stage_result = run.stages.get(stage.name)
                if stage_result is None or stage_result.status != StageStatus.RUNNING:
                    continue
                for task in stage.tasks:
                    if task.name not in stage_result.tasks:
                        stage_result.record(
                            TaskResult(
                                name=task.name, status=TaskStatus.FAILED, error=TIMEOUT_REASON
                            )
                        )
                stage_result.status = StageStatus.FAILED
            run.finish(RunStatus.FAILED, TIMEOUT_REASON)

        for stage in stages:
            if stage.name not in run.stages:
                run.stages[stage.name] = StageResult(name=stage.name, status=StageStatus.SKIPPED)

        run.finish(RunStatus.SUCCEEDED)
        result = run.result()

        logger.info(
            "Run '{run_id}' finished: {status}{reason}",
            run_id=run.run_id,
            status=result.status,
            reason=f" ({result.reason})" if result.reason else "",
        )
        await self.coordinator.notify(
            RunCompleted(
                run_id=run.run_id,
                status=str(result.status),
                reason=result.reason,
                duration_ms=result.duration_ms,
            )
        )
        return result

    async def _run_all(self, run: Run, stages: tuple[StageSpec, ...]) -> None:
        for index, stage in enumerate(stages, start=1):
            if run.is_terminal:
                break
            gated = stage.checkpoint or stage.exclusive
            if gated and self.gate is not None:
                if not await self.gate.pass_checkpoint(run, index, exclusive=stage.exclusive):
                    logger.info(
                        "Run '{run_id}' stopped before stage '{stage}'",
                        run_id=run.run_id,
                        stage=stage.name,
                    )
                    break

            try:
                stage_result = await self._run_stage(run, index, stage)
            finally:
                if stage.exclusive and self.gate is not None:
                    await self.gate.leave(run, index)
            if stage_result.status == StageStatus.FAILED:
                run.finish(
                    RunStatus.FAILED,
                    f"stage '{stage.name}' failed: task '{stage_result.first_failure}'",
                )
                break

    async def _run_stage(self, run: Run, index: int, stage: StageSpec) -> StageResult:
        stage_result = StageResult(name=stage.name, status=StageStatus.RUNNING)
        run.stages[stage.name] = stage_result
        timer = Timer()

        logger.info(
            "Stage '{stage}' ({index}) running {count} task(s)",
            stage=stage.name,
            index=index,
            count=len(stage.tasks),
        )
        await self.coordinator.notify(
            StageStarted(
                run_id=run.run_id,
                name=stage.name,
                index=index,
                tasks=tuple(t.name for t in stage.tasks),
            )
        )

        async def run_one(task: TaskSpec) -> None:
            # record on completion so first_failure is the earliest in time
            stage_result.record(await self.task_runner.run_task(run, stage.name, task))

        outcomes = await asyncio.gather(
            *(run_one(task) for task in stage.tasks), return_exceptions=True
        )
        for task, outcome in zip(stage.tasks, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.opt(exception=outcome).error(
                    "Task '{task}' crashed", task=task.name
                )
                stage_result.record(
                    TaskResult(
                        name=task.name,
                        status=TaskStatus.FAILED,
                        error=f"{type(outcome).__name__}: {outcome}",
                    )
                )

        stage_result.status = (
            StageStatus.FAILED if stage_result.failed_tasks else StageStatus.SUCCEEDED
        )
        stage_result.duration_ms = timer.duration_ms

        logger.info(
            "Stage '{stage}' {status} in {duration}",
            stage=stage.name,
            status=stage_result.status,
            duration=timer.duration_str,
        )
        await self.coordinator.notify(
            StageCompleted(
                run_id=run.run_id,
                name=stage.name,
                index=index,
                status=str(stage_result.status),
                duration_ms=stage_result.duration_ms,
                failed_tasks=tuple(t.name for t in stage_result.failed_tasks),
            )
        )
        return stage_result
