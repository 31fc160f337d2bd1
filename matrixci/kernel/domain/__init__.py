"""Domain layer exports."""

from matrixci.kernel.domain.artifacts import ArtifactEntry, FileSet
from matrixci.kernel.domain.branch import PublishPolicy
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.domain.pipeline import (
    OutputStash,
    Pipeline,
    PublishSpec,
    StageSpec,
    StepKind,
    SubStep,
    TaskSpec,
)
from matrixci.kernel.domain.run import (
    Run,
    RunResult,
    RunStatus,
    StageResult,
    StageStatus,
    StepResult,
    StepStatus,
    TaskResult,
    TaskStatus,
)
from matrixci.kernel.domain.variant import (
    BuildRecipe,
    BuildVariant,
    MatrixSpec,
    TestRecipe,
    TestVariant,
)

__all__ = [
    # Artifacts
    "ArtifactEntry",
    "FileSet",
    # Workers
    "LabelSet",
    "Worker",
    # Pipeline structure
    "OutputStash",
    "Pipeline",
    "PublishPolicy",
    "PublishSpec",
    "StageSpec",
    "StepKind",
    "SubStep",
    "TaskSpec",
    # Runtime state
    "Run",
    "RunResult",
    "RunStatus",
    "StageResult",
    "StageStatus",
    "StepResult",
    "StepStatus",
    "TaskResult",
    "TaskStatus",
    # Variant matrix
    "BuildRecipe",
    "BuildVariant",
    "MatrixSpec",
    "TestRecipe",
    "TestVariant",
]
