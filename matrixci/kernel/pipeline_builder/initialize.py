"""The Initialize stage every run starts with."""

from __future__ import annotations

from matrixci.kernel.domain.labels import LabelSet
from matrixci.kernel.domain.pipeline import OutputStash, StageSpec, SubStep, TaskSpec
from matrixci.kernel.validation.retry import RetryConfig

INITIALIZE_STAGE = "Initialize"
INITIALIZE_TASK = "initialize"
SRCS_STASH = "srcs"

DEFAULT_CHECKOUT = RetryConfig(max_attempts=5, attempt_timeout=120.0)
DEFAULT_INITIALIZE_LABELS = LabelSet.of("linux")
DEFAULT_SRCS_EXCLUDES: tuple[str, ...] = (".git/**/*",)


def initialize_stage(
    checkout: RetryConfig = DEFAULT_CHECKOUT,
    labels: LabelSet = DEFAULT_INITIALIZE_LABELS,
    approval: bool = True,
    excludes: tuple[str, ...] = DEFAULT_SRCS_EXCLUDES,
) -> StageSpec:
    """Build the Initialize stage: checkout, optional approval, stash ``srcs``.

    The checkout step is retried under ``checkout``; the working tree is
    wiped between attempts. The ``srcs`` stash is what every later task
    unpacks to get the sources.
    """
    steps = [SubStep(name="checkout", checkout=checkout)]
    if approval:
        steps.append(SubStep(name="approval", approval=True))
    task = TaskSpec(
        name=INITIALIZE_TASK,
        labels=labels,
        steps=tuple(steps),
        outputs=(OutputStash(SRCS_STASH, excludes=excludes),),
    )
    return StageSpec(name=INITIALIZE_STAGE, tasks=(task,))
