"""Pydantic models for YAML pipeline definitions.

These models are the single source of truth for what a pipeline file may
contain; ``yaml_builder`` validates raw YAML against them and then converts
them into the immutable domain types the engine runs.

Examples
--------
```yaml
apiVersion: matrixci/v1
kind: Pipeline
metadata:
  name: xgboost
spec:
  checkout:
    attempts: 5
    timeout: 120
  publish:
    mainline: master
    release_pattern: "release_*"
  workers:
    - id: cpu-01
      labels: [linux, cpu]
  recipes:
    build:
      cpu:
        inputs: [srcs]
        steps:
          - name: build
            run: tests/ci_build/build_via_cmake.sh
        outputs:
          wheel: ["python-package/dist/*.whl"]
    test:
      python:
        inputs: [srcs]
        steps:
          - name: pytest
            run: tests/ci_build/test_python.sh {host_accel}
  stages:
    - name: Build
      build_matrix:
        - {}
        - {accel: "11.0", reference: true}
    - name: Test
      test_matrix:
        - {target: python}
        - {target: python, artifact_accel: "11.0"}
```
"""

from __future__ import annotations

from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

API_VERSION = "matrixci/v1"

Labels = list[str] | str


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RetryModel(_Model):
    """Retry/timeout policy in YAML form."""

    attempts: int = Field(default=1, ge=1, description="Total attempts, 1 means no retry")
    timeout: float | None = Field(default=None, gt=0, description="Per-attempt deadline (s)")
    delay: float = Field(default=0.0, ge=0, description="Delay before the first retry (s)")
    backoff: float = Field(default=2.0, ge=1, description="Delay multiplier per retry")


class CheckoutModel(_Model):
    """Initialize-stage options."""

    attempts: int | None = Field(default=None, ge=1, description="Engine default when unset")
    timeout: float | None = Field(default=None, gt=0, description="Engine default when unset")
    labels: Labels = Field(default_factory=lambda: ["linux"])
    approval: bool = True
    excludes: list[str] = Field(default_factory=lambda: [".git/**/*"])


class PublishPolicyModel(_Model):
    mainline: str | None = None
    release_pattern: str | None = None


class PublishModel(_Model):
    stash: str
    destination: str


class StepModel(_Model):
    """One sub-step: a ``run`` command or a ``publish`` of an earlier stash."""

    name: str
    run: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    publish: PublishModel | None = None

    @model_validator(mode="after")
    def check_one_action(self) -> Self:
        if (self.run is None) == (self.publish is None):
            raise ValueError(f"step '{self.name}' needs exactly one of 'run' or 'publish'")
        return self


class OutputModel(_Model):
    includes: list[str] = Field(default_factory=lambda: ["**/*"])
    excludes: list[str] = Field(default_factory=list)


def _normalize_outputs(value: Any) -> Any:
    """Allow ``name: [patterns]`` as a shorthand for ``name: {includes: [...]}``."""
    if isinstance(value, dict):
        return {
            name: {"includes": [spec] if isinstance(spec, str) else spec}
            if isinstance(spec, list | str)
            else spec
            for name, spec in value.items()
        }
    return value


class BuildRecipeModel(_Model):
    inputs: list[str] = Field(default_factory=list)
    steps: list[StepModel] = Field(default_factory=list)
    outputs: dict[str, list[str]] = Field(
        default_factory=lambda: {"wheel": ["**/*"]},
        description="Artifact name -> glob patterns; stash names are derived per variant",
    )
    pool_steps: list[StepModel] = Field(default_factory=list)
    pool_outputs: dict[str, list[str]] = Field(default_factory=dict)
    repair_steps: list[StepModel] = Field(default_factory=list)

    @field_validator("outputs", "pool_outputs", mode="before")
    @classmethod
    def single_pattern(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: [v] if isinstance(v, str) else v for k, v in value.items()}
        return value


class TestRecipeModel(_Model):
    __test__ = False

    inputs: list[str] = Field(default_factory=list)
    steps: list[StepModel] = Field(default_factory=list)


class RecipesModel(_Model):
    build: dict[str, BuildRecipeModel] = Field(default_factory=dict)
    test: dict[str, TestRecipeModel] = Field(default_factory=dict)


class BuildVariantModel(_Model):
    accel: str | None = None
    arch: str = "x86_64"
    framework: str | None = None
    reference: bool = False
    pool_support: bool = False
    kind: str | None = None
    labels: Labels | None = None
    name: str | None = None


class TestVariantModel(_Model):
    __test__ = False

    target: str
    artifact: str = "wheel"
    artifact_accel: str | None = None
    host_accel: str | None = None
    arch: str = "x86_64"
    framework: str | None = None
    multi_accel: bool = False
    pool: bool = False
    labels: Labels | None = None
    name: str | None = None


class TaskModel(_Model):
    name: str
    labels: Labels
    inputs: list[str] = Field(default_factory=list)
    outputs: dict[str, OutputModel] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)
    steps: list[StepModel] = Field(default_factory=list)
    retry: RetryModel | None = None

    @field_validator("outputs", mode="before")
    @classmethod
    def output_shorthand(cls, value: Any) -> Any:
        return _normalize_outputs(value)


class StageModel(_Model):
    """A stage: explicit tasks, a build matrix, a test matrix, or a mix."""

    name: str
    checkpoint: bool = True
    exclusive: bool | None = Field(
        default=None, description="One run per branch inside; default: stages that publish"
    )
    tasks: list[TaskModel] = Field(default_factory=list)
    build_matrix: list[BuildVariantModel] = Field(default_factory=list)
    test_matrix: list[TestVariantModel] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_not_empty(self) -> Self:
        if not (self.tasks or self.build_matrix or self.test_matrix):
            raise ValueError(f"stage '{self.name}' declares no tasks")
        return self


class WorkerModel(_Model):
    id: str
    labels: Labels
    count: int = Field(default=1, ge=1, description="Replicas, suffixed -1, -2, ...")


class PipelineSpecModel(_Model):
    checkout: CheckoutModel = Field(default_factory=CheckoutModel)
    publish: PublishPolicyModel = Field(default_factory=PublishPolicyModel)
    run_timeout: float | None = Field(default=None, gt=0)
    workers: list[WorkerModel] = Field(default_factory=list)
    recipes: RecipesModel = Field(default_factory=RecipesModel)
    stages: list[StageModel]

    @field_validator("stages")
    @classmethod
    def check_has_stages(cls, value: list[StageModel]) -> list[StageModel]:
        if not value:
            raise ValueError("a pipeline needs at least one stage")
        return value


class PipelineDefinition(BaseModel):
    """Top-level ``kind: Pipeline`` manifest."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    api_version: Literal["matrixci/v1"] = Field(alias="apiVersion")
    kind: Literal["Pipeline"]
    metadata: dict[str, Any] = Field(default_factory=dict)
    spec: PipelineSpecModel

    @property
    def name(self) -> str:
        return str(self.metadata.get("name", "pipeline"))
