"""Port interface for running a task's concrete work.

The engine never looks inside a command: it hands a :class:`CommandSpec` to
the executor and only observes the exit code. Logs are carried along for
reporting and are never interpreted.
"""

from abc import abstractmethod
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class CommandSpec(BaseModel):
    """A serializable description of one command to execute.

    Attributes
    ----------
    task_name : str
        Task the command belongs to
    step_name : str
        Sub-step within the task
    command : str
        Shell command line
    env : dict[str, str]
        Extra environment variables (variant parameters, run metadata)
    workdir : Path
        Task workspace; input stashes are unpacked here and outputs collected from here
    worker_id : str
        Identity of the leased worker the command is dispatched to
    worker_labels : tuple[str, ...]
        Capability labels of that worker
    """

    model_config = ConfigDict(frozen=True)

    task_name: str
    step_name: str
    command: str
    env: dict[str, str] = Field(default_factory=dict)
    workdir: Path
    worker_id: str
    worker_labels: tuple[str, ...] = ()


class ExecutionOutcome(BaseModel):
    """Result of executing a command.

    Attributes
    ----------
    exit_code : int
        Process exit status; anything but 0 fails the task
    logs : str
        Combined output, opaque to the engine
    duration_ms : float
        Wall-clock execution time
    """

    exit_code: int
    logs: str = ""
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class TaskExecutor(Protocol):
    """Port interface for command execution backends.

    - **LocalShellExecutor**: runs the command in a local shell
    - **MockTaskExecutor**: scripted outcomes for tests and dry runs

    Executors may implement optional ``asetup()`` / ``aclose()`` lifecycle
    methods; the pipeline runner calls them around a run.
    """

    @abstractmethod
    async def execute(self, spec: CommandSpec) -> ExecutionOutcome:
        """Run one command and report its exit code and logs.

        Raising instead of returning a non-zero exit code is also treated as
        a failure of the sub-step.
        """
        ...
