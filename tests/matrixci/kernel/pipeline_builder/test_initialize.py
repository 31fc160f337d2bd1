from matrixci.kernel.domain.labels import LabelSet
from matrixci.kernel.domain.pipeline import StepKind
from matrixci.kernel.pipeline_builder.initialize import (
    DEFAULT_CHECKOUT,
    INITIALIZE_STAGE,
    SRCS_STASH,
    initialize_stage,
)
from matrixci.kernel.validation.retry import RetryConfig


class TestInitializeStage:
    def test_defaults(self) -> None:
        stage = initialize_stage()
        assert stage.name == INITIALIZE_STAGE
        [task] = stage.tasks
        assert [s.kind for s in task.steps] == [StepKind.CHECKOUT, StepKind.APPROVAL]
        assert task.steps[0].checkout == DEFAULT_CHECKOUT
        assert DEFAULT_CHECKOUT.max_attempts == 5
        assert task.output_names == (SRCS_STASH,)
        assert task.outputs[0].excludes == (".git/**/*",)
        assert task.labels == LabelSet.of("linux")

    def test_without_approval(self) -> None:
        stage = initialize_stage(
            checkout=RetryConfig(max_attempts=1), labels=LabelSet.of("linux", "cpu"), approval=False
        )
        [task] = stage.tasks
        assert [s.name for s in task.steps] == ["checkout"]
        assert task.labels == LabelSet.of("linux", "cpu")
