"""Stage, task and sub-step definitions.

These are the immutable building blocks the stage executor runs. A pipeline
is an ordered tuple of :class:`StageSpec`; each stage holds tasks that run in
parallel; each task holds an ordered tuple of :class:`SubStep` that run one
after another and halt at the first failure.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING

from matrixci.kernel.domain.branch import PublishPolicy
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.exceptions import ConfigurationError, DependencyError
from matrixci.kernel.utils.templates import placeholders

if TYPE_CHECKING:
    from matrixci.kernel.validation.retry import RetryConfig

DEFAULT_OUTPUT_PATTERNS: tuple[str, ...] = ("**/*",)


def _freeze(mapping: Mapping[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


# run fields a publish destination may reference, e.g. "s3://nightly/{branch}"
DESTINATION_PLACEHOLDERS = frozenset({"branch", "commit", "sequence"})


@dataclass(frozen=True, slots=True)
class PublishSpec:
    """Upload a stash to a destination (only on publishable branches)."""

    stash: str
    destination: str

    def __post_init__(self) -> None:
        unknown = placeholders(self.destination) - DESTINATION_PLACEHOLDERS
        if unknown:
            raise ConfigurationError(
                f"publish of '{self.stash}'",
                f"unknown destination placeholder(s) {sorted(unknown)} "
                f"(available: {', '.join(sorted(DESTINATION_PLACEHOLDERS))})",
            )


class StepKind(StrEnum):
    COMMAND = "command"
    PUBLISH = "publish"
    CHECKOUT = "checkout"
    APPROVAL = "approval"


@dataclass(frozen=True, slots=True)
class SubStep:
    """One sequential step inside a task.

    Exactly one of the following is set:

    - ``run``: shell command handed to the task executor
    - ``publish``: upload of an earlier stash, only on publishable branches
    - ``checkout``: retry policy for fetching the run's commit into the workspace
    - ``approval``: ask the approval gate whether the run may proceed
    """

    name: str
    run: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    publish: PublishSpec | None = None
    checkout: RetryConfig | None = None
    approval: bool = False

    def __post_init__(self) -> None:
        chosen = [
            self.run is not None,
            self.publish is not None,
            self.checkout is not None,
            self.approval,
        ]
        if sum(chosen) != 1:
            raise ConfigurationError(
                f"step '{self.name}'",
                "exactly one of 'run', 'publish', 'checkout' or 'approval' must be set",
            )
        object.__setattr__(self, "env", _freeze(self.env))

    @property
    def kind(self) -> StepKind:
        if self.run is not None:
            return StepKind.COMMAND
        if self.publish is not None:
            return StepKind.PUBLISH
        if self.checkout is not None:
            return StepKind.CHECKOUT
        return StepKind.APPROVAL


@dataclass(frozen=True, slots=True)
class OutputStash:
    """A stash a task produces, collected from its workspace by glob patterns."""

    name: str
    includes: tuple[str, ...] = DEFAULT_OUTPUT_PATTERNS
    excludes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """A unit of parallel work within a stage.

    Attributes
    ----------
    name : str
        Unique task name across the whole pipeline
    labels : LabelSet
        Capability predicate the leased worker must satisfy
    steps : tuple[SubStep, ...]
        Ordered sub-steps, halting at the first failure
    inputs : tuple[str, ...]
        Stash names unpacked into the workspace before the first step
    outputs : tuple[OutputStash, ...]
        Stashes collected from the workspace after the last step
    params : Mapping[str, str]
        Variant parameters, exported to every step as ``MATRIXCI_<KEY>``
    retry : RetryConfig | None
        Optional retry/timeout policy for each command step
    """

    name: str
    labels: LabelSet
    steps: tuple[SubStep, ...] = ()
    inputs: tuple[str, ...] = ()
    outputs: tuple[OutputStash, ...] = ()
    params: Mapping[str, str] = field(default_factory=dict)
    retry: RetryConfig | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", _freeze(self.params))
        step_names = [s.name for s in self.steps]
        duplicates = {n for n in step_names if step_names.count(n) > 1}
        if duplicates:
            raise ConfigurationError(
                f"task '{self.name}'", f"duplicate step names: {', '.join(sorted(duplicates))}"
            )

    @property
    def output_names(self) -> tuple[str, ...]:
        return tuple(o.name for o in self.outputs)

    @property
    def publishes(self) -> tuple[PublishSpec, ...]:
        return tuple(s.publish for s in self.steps if s.publish is not None)


@dataclass(frozen=True, slots=True)
class StageSpec:
    """An ordered phase of the pipeline; its tasks run in parallel behind a barrier."""

    name: str
    tasks: tuple[TaskSpec, ...] = ()
    checkpoint: bool = True
    # at most one run of a branch inside the stage at a time
    exclusive: bool = False


def validate_stages(stages: Iterable[StageSpec], provided: Iterable[str] = ()) -> None:
    """Check the stash graph of a pipeline before anything runs.

    Every task name and every output stash must be unique, and every input
    stash must be produced by a task of an *earlier* stage (or be part of
    ``provided``, e.g. the ``srcs`` stash written by Initialize). A stash
    produced in the same stage would race its reader, so it does not count.
    Publish steps follow the same rule as inputs.

    Raises
    ------
    ConfigurationError
        On duplicate stage, task or stash names
    DependencyError
        On an input with no upstream producer
    """
    available: set[str] = set(provided)
    task_names: set[str] = set()
    stage_names: set[str] = set()

    for stage in stages:
        if stage.name in stage_names:
            raise ConfigurationError("pipeline", f"duplicate stage name '{stage.name}'")
        stage_names.add(stage.name)

        produced_here: set[str] = set()
        for task in stage.tasks:
            if task.name in task_names:
                raise ConfigurationError("pipeline", f"duplicate task name '{task.name}'")
            task_names.add(task.name)

            for stash in task.inputs:
                if stash not in available:
                    raise DependencyError(
                        task.name,
                        f"input stash '{stash}' is not produced by any earlier stage",
                    )
            for publish in task.publishes:
                if publish.stash not in available:
                    raise DependencyError(
                        task.name,
                        f"publish step references stash '{publish.stash}' "
                        "that no earlier stage produces",
                    )
            for stash in task.output_names:
                if stash in available or stash in produced_here:
                    raise ConfigurationError(
                        "pipeline", f"stash '{stash}' is written by more than one task"
                    )
                produced_here.add(stash)

        available |= produced_here


@dataclass(frozen=True, slots=True)
class Pipeline:
    """A loaded pipeline: the Initialize stage plus the declared stages.

    ``initialize`` checks out the source and stashes it as ``srcs``; it is
    kept separate so tools can show the declared stages on their own.
    """

    name: str
    stages: tuple[StageSpec, ...]
    initialize: StageSpec | None = None
    publish_policy: PublishPolicy = field(default_factory=PublishPolicy)
    workers: tuple[Worker, ...] = ()
    run_timeout: float | None = None

    def all_stages(self) -> tuple[StageSpec, ...]:
        return ((self.initialize,) if self.initialize else ()) + self.stages

    def tasks(self) -> list[TaskSpec]:
        return [task for stage in self.all_stages() for task in stage.tasks]

    def validate(self) -> None:
        validate_stages(self.all_stages())
