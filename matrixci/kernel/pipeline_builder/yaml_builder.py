"""YAML Pipeline Builder.

The builder turns a ``kind: Pipeline`` YAML manifest into a runnable
:class:`~matrixci.kernel.domain.pipeline.Pipeline`:

1. Parse YAML
2. Validate the manifest against the pydantic models in ``pipeline_config``
3. Convert explicit tasks, recipes and variants into domain types
4. Expand the build/test matrices (one expansion over all stages, so a test
   matrix can consume builds declared in any earlier stage)
5. Prepend the Initialize stage and check the stash graph

Every problem found on the way raises a ``ConfigurationError`` subclass
before any worker is leased.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pydantic
import yaml

from matrixci.kernel.domain.branch import PublishPolicy
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.domain.pipeline import (
    OutputStash,
    Pipeline,
    PublishSpec,
    StageSpec,
    SubStep,
    TaskSpec,
)
from matrixci.kernel.domain.variant import (
    BuildRecipe,
    BuildVariant,
    MatrixSpec,
    TestRecipe,
    TestVariant,
)
from matrixci.kernel.exceptions import (
    ConfigurationError,
    PipelineDefinitionError,
    ValidationError,
)
from matrixci.kernel.logging import get_logger
from matrixci.kernel.pipeline_builder.initialize import DEFAULT_CHECKOUT, initialize_stage
from matrixci.kernel.pipeline_builder.matrix import expand
from matrixci.kernel.pipeline_builder.pipeline_config import (
    BuildRecipeModel,
    CheckoutModel,
    Labels,
    PipelineDefinition,
    RetryModel,
    StageModel,
    StepModel,
    TaskModel,
    TestRecipeModel,
    WorkerModel,
)
from matrixci.kernel.validation.retry import RetryConfig

logger = get_logger(__name__)


# ----------------------------------------------------------------------
# Model -> domain conversion
# ----------------------------------------------------------------------


def to_labels(labels: Labels) -> LabelSet:
    if isinstance(labels, str):
        return LabelSet.parse(labels)
    return LabelSet.from_iterable(labels)


def to_retry(model: RetryModel) -> RetryConfig:
    return RetryConfig(
        max_attempts=model.attempts,
        attempt_timeout=model.timeout,
        delay=model.delay,
        backoff=model.backoff,
    )


def to_step(model: StepModel) -> SubStep:
    publish = None
    if model.publish is not None:
        publish = PublishSpec(stash=model.publish.stash, destination=model.publish.destination)
    return SubStep(name=model.name, run=model.run, env=model.env, publish=publish)


def _steps(models: Iterable[StepModel]) -> tuple[SubStep, ...]:
    return tuple(to_step(m) for m in models)


def to_task(model: TaskModel) -> TaskSpec:
    return TaskSpec(
        name=model.name,
        labels=to_labels(model.labels),
        steps=_steps(model.steps),
        inputs=tuple(model.inputs),
        outputs=tuple(
            OutputStash(name, tuple(out.includes), tuple(out.excludes))
            for name, out in model.outputs.items()
        ),
        params=model.params,
        retry=to_retry(model.retry) if model.retry else None,
    )


def to_build_recipe(model: BuildRecipeModel) -> BuildRecipe:
    return BuildRecipe(
        steps=_steps(model.steps),
        outputs={name: tuple(p) for name, p in model.outputs.items()},
        pool_steps=_steps(model.pool_steps),
        pool_outputs={name: tuple(p) for name, p in model.pool_outputs.items()},
        repair_steps=_steps(model.repair_steps),
        inputs=tuple(model.inputs),
    )


def to_test_recipe(model: TestRecipeModel) -> TestRecipe:
    return TestRecipe(steps=_steps(model.steps), inputs=tuple(model.inputs))


def to_workers(models: Iterable[WorkerModel]) -> tuple[Worker, ...]:
    workers: list[Worker] = []
    for model in models:
        labels = to_labels(model.labels)
        if model.count == 1:
            workers.append(Worker(model.id, labels))
        else:
            workers.extend(Worker(f"{model.id}-{i}", labels) for i in range(1, model.count + 1))
    return tuple(workers)


def to_initialize(model: CheckoutModel, default: RetryConfig = DEFAULT_CHECKOUT) -> StageSpec:
    checkout = RetryConfig(
        max_attempts=model.attempts or default.max_attempts,
        attempt_timeout=model.timeout or default.attempt_timeout,
    )
    return initialize_stage(
        checkout=checkout,
        labels=to_labels(model.labels),
        approval=model.approval,
        excludes=tuple(model.excludes),
    )


class YamlPipelineBuilder:
    """YAML -> Pipeline builder.

    Parameters
    ----------
    publish_policy : PublishPolicy | None
        Policy used when the manifest's ``publish`` section leaves a field
        unset (typically built from the engine configuration)
    run_timeout : float | None
        Run deadline used when the manifest does not set ``run_timeout``
    checkout : RetryConfig | None
        Checkout attempts and deadline used when ``checkout`` leaves them unset

    Examples
    --------
    Example usage::

        builder = YamlPipelineBuilder()
        pipeline = builder.build_from_yaml_file("pipelines/xgboost.yaml")
        for stage in pipeline.all_stages():
            print(stage.name, [t.name for t in stage.tasks])
    """

    def __init__(
        self,
        publish_policy: PublishPolicy | None = None,
        run_timeout: float | None = None,
        checkout: RetryConfig | None = None,
    ) -> None:
        self.publish_policy = publish_policy or PublishPolicy()
        self.run_timeout = run_timeout
        self.checkout = checkout or DEFAULT_CHECKOUT

    # --- Public API ---

    def build_from_yaml_file(self, yaml_path: str | Path) -> Pipeline:
        path = Path(yaml_path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PipelineDefinitionError(str(path), f"cannot read file: {e}") from e
        return self.build_from_yaml_string(content, source=str(path))

    def build_from_yaml_string(self, yaml_content: str, source: str = "<string>") -> Pipeline:
        definition = self.load_definition(yaml_content, source)
        return self.build(definition, source)

    def load_definition(self, yaml_content: str, source: str = "<string>") -> PipelineDefinition:
        """Parse and validate a manifest without converting it."""
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise PipelineDefinitionError(source, f"invalid YAML: {e}") from e
        if not isinstance(data, dict):
            raise PipelineDefinitionError(
                source, f"YAML document must be a mapping, got {type(data).__name__}"
            )
        try:
            return PipelineDefinition.model_validate(data)
        except pydantic.ValidationError as e:
            raise PipelineDefinitionError(source, _format_errors(e)) from e

    def build(self, definition: PipelineDefinition, source: str = "<definition>") -> Pipeline:
        spec = definition.spec
        try:
            matrix = MatrixSpec(
                build_variants=tuple(
                    self._build_variant(v.model_dump()) for s in spec.stages for v in s.build_matrix
                ),
                test_variants=tuple(
                    self._test_variant(v.model_dump()) for s in spec.stages for v in s.test_matrix
                ),
                build_recipes={k: to_build_recipe(r) for k, r in spec.recipes.build.items()},
                test_recipes={k: to_test_recipe(r) for k, r in spec.recipes.test.items()},
            )
            stages = self._stages(spec.stages, matrix)
            initialize = to_initialize(spec.checkout, self.checkout)
            workers = to_workers(spec.workers)
        except (ValidationError, ConfigurationError) as e:
            raise PipelineDefinitionError(source, str(e)) from e

        policy = PublishPolicy(
            mainline=spec.publish.mainline or self.publish_policy.mainline,
            release_pattern=spec.publish.release_pattern or self.publish_policy.release_pattern,
        )
        pipeline = Pipeline(
            name=definition.name,
            stages=stages,
            initialize=initialize,
            publish_policy=policy,
            workers=workers,
            run_timeout=spec.run_timeout or self.run_timeout,
        )
        pipeline.validate()

        logger.info(
            "Built pipeline '{name}' with {stages} stages and {tasks} tasks",
            name=pipeline.name,
            stages=len(pipeline.all_stages()),
            tasks=len(pipeline.tasks()),
        )
        return pipeline

    # --- Core Logic ---

    @staticmethod
    def _build_variant(data: dict[str, Any]) -> BuildVariant:
        labels = data.pop("labels")
        return BuildVariant(**data, labels=to_labels(labels) if labels is not None else None)

    @staticmethod
    def _test_variant(data: dict[str, Any]) -> TestVariant:
        labels = data.pop("labels")
        return TestVariant(**data, labels=to_labels(labels) if labels is not None else None)

    def _stages(self, models: list[StageModel], matrix: MatrixSpec) -> tuple[StageSpec, ...]:
        expansion = expand(matrix)
        build_tasks = iter(expansion.build_tasks)
        test_tasks = iter(expansion.test_tasks)

        stages = []
        for model in models:
            tasks = [to_task(t) for t in model.tasks]
            # expansion preserves declaration order, so tasks map back by position
            tasks.extend(next(build_tasks) for _ in model.build_matrix)
            tasks.extend(next(test_tasks) for _ in model.test_matrix)
            exclusive = model.exclusive
            if exclusive is None:
                exclusive = any(task.publishes for task in tasks)
            stages.append(
                StageSpec(
                    name=model.name,
                    tasks=tuple(tasks),
                    checkpoint=model.checkpoint,
                    exclusive=exclusive,
                )
            )
        return tuple(stages)


def _format_errors(error: pydantic.ValidationError) -> str:
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"{location}: {item['msg']}")
    return "; ".join(lines)


def load_pipeline(
    path: str | Path,
    publish_policy: PublishPolicy | None = None,
    run_timeout: float | None = None,
    checkout: RetryConfig | None = None,
) -> Pipeline:
    """Build a pipeline from a YAML file."""
    return YamlPipelineBuilder(publish_policy, run_timeout, checkout).build_from_yaml_file(path)
