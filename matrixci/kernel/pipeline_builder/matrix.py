"""Variant matrix expansion.

:func:`expand` turns typed build/test variants plus per-kind recipes into
concrete build and test tasks. It is pure and deterministic: the same
:class:`MatrixSpec` always yields the same tasks in the same order.

Every test task's input stash is derived with the same naming function as
the build outputs, so a test variant whose artifact no build variant
produces is caught here, before any worker is leased.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace

from matrixci.kernel.domain.labels import LabelSet
from matrixci.kernel.domain.pipeline import OutputStash, StageSpec, SubStep, TaskSpec
from matrixci.kernel.domain.variant import DEFAULT_ARCH, BuildVariant, MatrixSpec, TestVariant
from matrixci.kernel.exceptions import ConfigurationError, DanglingDependencyError
from matrixci.kernel.logging import get_logger
from matrixci.kernel.utils.templates import render

logger = get_logger(__name__)

ARM_ARCH = "aarch64"


@dataclass(frozen=True, slots=True)
class MatrixExpansion:
    """Tasks produced by :func:`expand`, in variant declaration order."""

    build_tasks: tuple[TaskSpec, ...] = ()
    test_tasks: tuple[TaskSpec, ...] = ()

    @property
    def stashes(self) -> tuple[str, ...]:
        """Every stash the build tasks produce."""
        return tuple(name for task in self.build_tasks for name in task.output_names)

    def stages(self, build_stage: str = "Build", test_stage: str = "Test") -> tuple[StageSpec, ...]:
        stages = []
        if self.build_tasks:
            stages.append(StageSpec(name=build_stage, tasks=self.build_tasks))
        if self.test_tasks:
            stages.append(StageSpec(name=test_stage, tasks=self.test_tasks))
        return tuple(stages)


# ----------------------------------------------------------------------
# Labels
# ----------------------------------------------------------------------


def labels_for_build(variant: BuildVariant) -> LabelSet:
    """Worker predicate for a build variant.

    Accelerator builds only need the toolkit, not a device, so they run on
    CPU build hosts.
    """
    if variant.labels is not None:
        return variant.labels
    if variant.arch == ARM_ARCH:
        return LabelSet.of("linux", "arm64")
    if variant.accel:
        return LabelSet.of("linux", "cpu_build")
    return LabelSet.of("linux", "cpu")


def labels_for_test(variant: TestVariant) -> LabelSet:
    """Worker predicate for a test variant."""
    if variant.labels is not None:
        return variant.labels
    if variant.multi_accel:
        return LabelSet.of("linux", "mgpu")
    if variant.effective_host_accel:
        return LabelSet.of("linux", "gpu")
    if variant.arch == ARM_ARCH:
        return LabelSet.of("linux", "arm64")
    return LabelSet.of("linux", "cpu")


def _render_step(step: SubStep, params: Mapping[str, str], where: str) -> SubStep:
    where = f"{where}/{step.name}"
    env = {k: render(v, params, where) for k, v in step.env.items()}
    if step.run is not None:
        return replace(step, run=render(step.run, params, where), env=env)
    return replace(step, env=env)


def _render_steps(
    steps: tuple[SubStep, ...], params: Mapping[str, str], where: str
) -> tuple[SubStep, ...]:
    return tuple(_render_step(step, params, where) for step in steps)


# ----------------------------------------------------------------------
# Expansion
# ----------------------------------------------------------------------


def _build_task(variant: BuildVariant, matrix: MatrixSpec) -> TaskSpec:
    kind = variant.recipe_kind
    recipe = matrix.build_recipes.get(kind)
    if recipe is None:
        raise ConfigurationError(
            variant.task_name,
            f"no build recipe for kind '{kind}' (known: {', '.join(sorted(matrix.build_recipes))})",
        )

    params = variant.params()
    where = variant.task_name
    steps = _render_steps(recipe.steps, params, where)
    outputs = [
        OutputStash(variant.stash(artifact), tuple(render(p, params, where) for p in patterns))
        for artifact, patterns in recipe.outputs.items()
    ]

    if variant.pool_support:
        if not recipe.pool_steps and not recipe.pool_outputs:
            raise ConfigurationError(where, f"recipe '{kind}' has no pool steps or outputs")
        steps += _render_steps(recipe.pool_steps, params, where)
        outputs.extend(
            OutputStash(
                variant.stash(artifact, pool=True),
                tuple(render(p, params, where) for p in patterns),
            )
            for artifact, patterns in recipe.pool_outputs.items()
        )

    if variant.reference:
        if not recipe.repair_steps:
            raise ConfigurationError(
                where, f"recipe '{kind}' has no repair steps for the reference variant"
            )
        # repairs the primary artifact in place, so it stays in the same task
        steps += _render_steps(recipe.repair_steps, params, where)

    return TaskSpec(
        name=variant.task_name,
        labels=labels_for_build(variant),
        steps=steps,
        inputs=recipe.inputs,
        outputs=tuple(outputs),
        params=params,
    )


def _test_task(variant: TestVariant, matrix: MatrixSpec, built: set[str]) -> TaskSpec:
    stash = variant.input_stash
    if stash not in built:
        raise DanglingDependencyError(variant.task_name, stash, sorted(built))

    recipe = matrix.test_recipes.get(variant.target)
    if recipe is None:
        raise ConfigurationError(
            variant.task_name,
            f"no test recipe for target '{variant.target}' "
            f"(known: {', '.join(sorted(matrix.test_recipes))})",
        )

    params = variant.params()
    inputs = tuple(dict.fromkeys((*recipe.inputs, stash)))
    return TaskSpec(
        name=variant.task_name,
        labels=labels_for_test(variant),
        steps=_render_steps(recipe.steps, params, variant.task_name),
        inputs=inputs,
        params=params,
    )


def expand(matrix: MatrixSpec) -> MatrixExpansion:
    """Expand a matrix into build and test tasks.

    Raises
    ------
    DanglingDependencyError
        If a test variant consumes a stash no build variant produces
    ConfigurationError
        On a missing recipe, an unknown placeholder, or duplicate task or
        stash names

    Examples
    --------
    Example usage::

        expansion = expand(MatrixSpec(
            build_variants=(BuildVariant(), BuildVariant(accel="11.0", reference=True)),
            test_variants=(TestVariant("python", artifact_accel="11.0"),),
            build_recipes={"cpu": cpu_recipe, "gpu": gpu_recipe},
            test_recipes={"python": python_tests},
        ))
        [t.name for t in expansion.build_tasks]  # ['build-cpu', 'build-gpu-accel11.0']
    """
    build_tasks = tuple(_build_task(v, matrix) for v in matrix.build_variants)

    built: set[str] = set()
    names: set[str] = set()
    for task in build_tasks:
        if task.name in names:
            raise ConfigurationError("build matrix", f"duplicate task name '{task.name}'")
        names.add(task.name)
        for stash in task.output_names:
            if stash in built:
                raise ConfigurationError(
                    "build matrix", f"stash '{stash}' is produced by more than one variant"
                )
            built.add(stash)

    test_tasks = tuple(_test_task(v, matrix, built) for v in matrix.test_variants)
    for task in test_tasks:
        if task.name in names:
            raise ConfigurationError("test matrix", f"duplicate task name '{task.name}'")
        names.add(task.name)

    logger.debug(
        "Expanded matrix into {builds} build and {tests} test task(s)",
        builds=len(build_tasks),
        tests=len(test_tasks),
    )
    return MatrixExpansion(build_tasks=build_tasks, test_tasks=test_tasks)


__all__ = [
    "ARM_ARCH",
    "DEFAULT_ARCH",
    "MatrixExpansion",
    "labels_for_build",
    "expand",
    "labels_for_test",
]
