"""Port interfaces the engine talks to."""

from matrixci.kernel.ports.approval import ApprovalGate
from matrixci.kernel.ports.artifact_store import ArtifactStore
from matrixci.kernel.ports.observer_manager import Observer, ObserverManager
from matrixci.kernel.ports.publisher import Publisher
from matrixci.kernel.ports.source import SourceFetcher, WorkingTree
from matrixci.kernel.ports.task_executor import CommandSpec, ExecutionOutcome, TaskExecutor

__all__ = [
    "ApprovalGate",
    "ArtifactStore",
    "CommandSpec",
    "ExecutionOutcome",
    "Observer",
    "ObserverManager",
    "Publisher",
    "SourceFetcher",
    "TaskExecutor",
    "WorkingTree",
]
