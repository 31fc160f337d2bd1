"""Orchestrator components.

- ``artifact_store``: retention and write-once bookkeeping shared by store adapters
- ``worker_pool``: label-matched exclusive worker leases
- ``concurrency_gate``: milestone checkpoints between runs of one branch
- ``execution_coordinator``: event delivery and step environments
- ``task_runner``: one task on one leased worker
"""

from matrixci.kernel.orchestration.components.artifact_store import BaseArtifactStore
from matrixci.kernel.orchestration.components.concurrency_gate import ConcurrencyGate
from matrixci.kernel.orchestration.components.execution_coordinator import ExecutionCoordinator
from matrixci.kernel.orchestration.components.task_runner import CommandFailedError, TaskRunner
from matrixci.kernel.orchestration.components.worker_pool import WorkerHandle, WorkerPool

__all__ = [
    "BaseArtifactStore",
    "CommandFailedError",
    "ConcurrencyGate",
    "ExecutionCoordinator",
    "TaskRunner",
    "WorkerHandle",
    "WorkerPool",
]
