"""PipelineRunner: one call from a trigger to a finished run.

Wires the pieces a run needs around the stage executor:

- allocate the run's sequence number (monotonic per branch)
- check every task's label predicate against the worker pool, before any
  worker is leased
- admit the run to the concurrency gate
- run Initialize and the pipeline's stages under the run deadline
- hand the finished run to artifact retention and release it from the gate

Examples
--------
Basic usage::

    pipeline = load_pipeline("pipelines/xgboost.yaml")
    runner = PipelineRunner(pipeline, LocalShellExecutor(), source=GitSourceFetcher(url))
    result = await runner.run(Trigger(branch="main-line", commit="1a2b3c"))

Two pushes to the same branch share one runner, so the newer one supersedes
the older at the next checkpoint::

    older, newer = await asyncio.gather(
        runner.run(Trigger(branch="main-line", sequence=5)),
        runner.run(Trigger(branch="main-line", sequence=7)),
    )
"""

from __future__ import annotations

import inspect
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from matrixci.kernel.domain.run import Run, RunResult, RunStatus
from matrixci.kernel.logging import get_logger, reset_correlation_id, set_correlation_id
from matrixci.kernel.orchestration.components.concurrency_gate import ConcurrencyGate
from matrixci.kernel.orchestration.components.execution_coordinator import ExecutionCoordinator
from matrixci.kernel.orchestration.components.task_runner import TaskRunner
from matrixci.kernel.orchestration.components.worker_pool import WorkerPool
from matrixci.kernel.orchestration.stage_executor import StageExecutor

if TYPE_CHECKING:
    from matrixci.kernel.config.models import EngineConfig
    from matrixci.kernel.domain.pipeline import Pipeline
    from matrixci.kernel.ports.approval import ApprovalGate
    from matrixci.kernel.ports.artifact_store import ArtifactStore
    from matrixci.kernel.ports.observer_manager import ObserverManager
    from matrixci.kernel.ports.publisher import Publisher
    from matrixci.kernel.ports.source import SourceFetcher
    from matrixci.kernel.ports.task_executor import TaskExecutor

logger = get_logger(__name__)


class Trigger(BaseModel):
    """What started a run: a push or a pull request update."""

    model_config = ConfigDict(frozen=True)

    branch: str = Field(min_length=1)
    commit: str | None = None
    author: str | None = None
    sequence: int | None = Field(default=None, ge=1, description="Allocated when omitted")


def _has_async_lifecycle(obj: Any, method_name: str) -> bool:
    return hasattr(obj, method_name) and inspect.iscoroutinefunction(
        getattr(obj, method_name, None)
    )


@asynccontextmanager
async def _managed_executor(executor: TaskExecutor) -> AsyncIterator[TaskExecutor]:
    """Call the executor's optional ``asetup()`` / ``aclose()`` around a run."""
    if _has_async_lifecycle(executor, "asetup"):
        await executor.asetup()  # type: ignore[attr-defined]
    try:
        yield executor
    finally:
        if _has_async_lifecycle(executor, "aclose"):
            try:
                await executor.aclose()  # type: ignore[attr-defined]
            except Exception as e:
                logger.warning("Executor cleanup failed: {}", e)


class PipelineRunner:
    """Runs one pipeline for any number of triggers.

    Runs started through the same runner share its worker pool, artifact
    store and concurrency gate, which is what makes supersession between
    runs of one branch work.

    Parameters
    ----------
    pipeline : Pipeline
        Stages to run, including Initialize
    executor : TaskExecutor
        Runs command sub-steps
    store : ArtifactStore | None
        Defaults to an in-memory store
    pool : WorkerPool | None
        Defaults to a pool of ``pipeline.workers``
    gate : ConcurrencyGate | None
        Defaults to a new gate reporting supersession as events
    source, approval, publisher
        Ports used by checkout, approval and publish sub-steps
    observer_manager : ObserverManager | None
        Receives run, stage and task events
    workspace_root : str | Path | None
        Parent of task workspaces
    keep_workspaces : bool
        Leave task workspaces on disk
    run_timeout : float | None
        Overrides ``pipeline.run_timeout``
    """

    def __init__(
        self,
        pipeline: Pipeline,
        executor: TaskExecutor,
        *,
        store: ArtifactStore | None = None,
        pool: WorkerPool | None = None,
        gate: ConcurrencyGate | None = None,
        source: SourceFetcher | None = None,
        approval: ApprovalGate | None = None,
        publisher: Publisher | None = None,
        observer_manager: ObserverManager | None = None,
        workspace_root: str | Path | None = None,
        keep_workspaces: bool = False,
        run_timeout: float | None = None,
    ) -> None:
        if store is None:
            from matrixci.adapters.artifacts.in_memory import (  # noqa: PLC0415  # lazy: kernel does not import adapters at module level
                InMemoryArtifactStore,
            )

            store = InMemoryArtifactStore()

        self.pipeline = pipeline
        self.executor = executor
        self.store = store
        self.pool = pool if pool is not None else WorkerPool(pipeline.workers)
        self.coordinator = ExecutionCoordinator(observer_manager)
        self.gate = gate if gate is not None else ConcurrencyGate(self.coordinator.notify)
        self.run_timeout = run_timeout if run_timeout is not None else pipeline.run_timeout
        self.task_runner = TaskRunner(
            executor,
            store,
            self.pool,
            source=source,
            approval=approval,
            publisher=publisher,
            publish_policy=pipeline.publish_policy,
            coordinator=self.coordinator,
            workspace_root=workspace_root,
            keep_workspaces=keep_workspaces,
        )
        self._sequences: dict[str, int] = {}

    @classmethod
    def from_config(
        cls,
        pipeline: Pipeline,
        executor: TaskExecutor,
        engine: EngineConfig,
        **kwargs: Any,
    ) -> PipelineRunner:
        """Build a runner whose defaults come from the engine configuration.

        Workers from ``engine`` are used only when the pipeline declares none.
        Keyword arguments win over configured values.
        """
        if "store" not in kwargs:
            from matrixci.adapters.artifacts import (  # noqa: PLC0415  # lazy: kernel does not import adapters at module level
                InMemoryArtifactStore,
                LocalArtifactStore,
            )

            if engine.artifact_root:
                kwargs["store"] = LocalArtifactStore(
                    engine.artifact_root,
                    max_retained_runs=engine.max_retained_runs,
                    retention_seconds=engine.retention_seconds,
                )
            else:
                kwargs["store"] = InMemoryArtifactStore(
                    max_retained_runs=engine.max_retained_runs,
                    retention_seconds=engine.retention_seconds,
                )

        if "pool" not in kwargs and not pipeline.workers:
            kwargs["pool"] = WorkerPool(w for cfg in engine.workers for w in cfg.to_workers())

        kwargs.setdefault("workspace_root", engine.workspace_root)
        if pipeline.run_timeout is None:
            kwargs.setdefault("run_timeout", engine.run_timeout)
        return cls(pipeline, executor, **kwargs)

    # --- Public API ---

    def next_sequence(self, branch: str) -> int:
        """Allocate the next sequence number for ``branch``."""
        sequence = self._sequences.get(branch, 0) + 1
        self._sequences[branch] = sequence
        return sequence

    def check_workers(self) -> None:
        """Raise ``NoEligibleWorkerError`` for the first task no worker can run."""
        for task in self.pipeline.tasks():
            self.pool.check_satisfiable(task.labels)

    async def run(self, trigger: Trigger | str) -> RunResult:
        """Run the pipeline once and return the terminal result.

        Raises
        ------
        NoEligibleWorkerError
            If some task's labels match no registered worker; nothing ran
        """
        if isinstance(trigger, str):
            trigger = Trigger(branch=trigger)

        if trigger.sequence is None:
            sequence = self.next_sequence(trigger.branch)
        else:
            sequence = trigger.sequence
            self._sequences[trigger.branch] = max(
                self._sequences.get(trigger.branch, 0), sequence
            )

        run = Run(
            branch=trigger.branch,
            sequence=sequence,
            requested_commit=trigger.commit,
            author=trigger.author,
        )
        token = set_correlation_id(run.run_id)
        try:
            self.check_workers()
            await self.gate.admit(run)
            try:
                async with _managed_executor(self.executor):
                    executor = StageExecutor(
                        self.task_runner,
                        self.gate,
                        self.coordinator,
                        run_timeout=self.run_timeout,
                    )
                    return await executor.run_stages(run, self.pipeline.all_stages())
            except Exception as e:
                run.finish(RunStatus.FAILED, f"{type(e).__name__}: {e}")
                raise
            finally:
                evicted = await self.store.mark_terminal(run.run_id)
                if evicted:
                    logger.debug("Evicted artifacts of {runs}", runs=", ".join(evicted))
                await self.gate.release(run)
        finally:
            reset_correlation_id(token)


__all__ = ["PipelineRunner", "Trigger"]
