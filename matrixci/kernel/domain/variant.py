"""Typed build/test variants and the recipes that say how to run them.

Variants say *what* configurations exist (accelerator version, architecture,
companion framework, reference flag, ...). Recipes say *how* one
configuration of a given kind is built or tested. The matrix builder combines
the two into concrete tasks.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from matrixci.kernel.domain.labels import LabelSet
from matrixci.kernel.domain.pipeline import DEFAULT_OUTPUT_PATTERNS, SubStep

DEFAULT_ARCH = "x86_64"
DEFAULT_ARTIFACT = "wheel"


def stash_name(
    artifact: str,
    accel: str | None = None,
    arch: str = DEFAULT_ARCH,
    framework: str | None = None,
    pool: bool = False,
) -> str:
    """Derive the stash name for an artifact built with the given parameters.

    Build and test variants call this with the same parameters, which is
    what lets the matrix builder check test inputs against build outputs.

    Examples
    --------
    >>> stash_name("wheel", accel="11.0")
    'wheel@accel:11.0'
    >>> stash_name("wheel")
    'wheel@cpu'
    >>> stash_name("cpp_tests", accel="11.0", pool=True)
    'cpp_tests@accel:11.0,pool'
    >>> stash_name("wheel", arch="aarch64")
    'wheel@cpu,arch:aarch64'
    """
    parts = [f"accel:{accel}" if accel else "cpu"]
    if arch != DEFAULT_ARCH:
        parts.append(f"arch:{arch}")
    if framework:
        parts.append(f"framework:{framework}")
    if pool:
        parts.append("pool")
    return f"{artifact}@{','.join(parts)}"


@dataclass(frozen=True, slots=True)
class BuildRecipe:
    """How to build one variant of a kind.

    ``steps`` always run; ``pool_steps`` run for variants with pool support;
    ``repair_steps`` run last, only for the reference variant. Step commands
    may use ``{accel}``, ``{arch}`` and ``{framework}`` placeholders.
    """

    steps: tuple[SubStep, ...] = ()
    outputs: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: {DEFAULT_ARTIFACT: DEFAULT_OUTPUT_PATTERNS}
    )
    pool_steps: tuple[SubStep, ...] = ()
    pool_outputs: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    repair_steps: tuple[SubStep, ...] = ()
    inputs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "outputs", MappingProxyType(dict(self.outputs)))
        object.__setattr__(self, "pool_outputs", MappingProxyType(dict(self.pool_outputs)))


@dataclass(frozen=True, slots=True)
class TestRecipe:
    """How to test one variant of a target. Placeholders add ``{host_accel}``."""

    __test__ = False

    steps: tuple[SubStep, ...] = ()
    inputs: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class BuildVariant:
    """One build configuration.

    Attributes
    ----------
    kind : str
        Recipe key; defaults to ``"gpu"`` when ``accel`` is set, else ``"cpu"``
    accel : str | None
        Accelerator library version (e.g. CUDA ``"11.0"``), None for CPU builds
    arch : str
        CPU architecture
    framework : str | None
        Companion framework version (e.g. Spark for JVM packages)
    reference : bool
        The publishable variant; gets the recipe's repair steps appended
    pool_support : bool
        Also build the accelerator-pool flavour of every artifact
    labels : LabelSet | None
        Explicit worker predicate; derived from the parameters when None
    name : str | None
        Explicit task name; derived from the parameters when None
    """

    accel: str | None = None
    arch: str = DEFAULT_ARCH
    framework: str | None = None
    reference: bool = False
    pool_support: bool = False
    kind: str | None = None
    labels: LabelSet | None = None
    name: str | None = None

    @property
    def recipe_kind(self) -> str:
        if self.kind:
            return self.kind
        return "gpu" if self.accel else "cpu"

    @property
    def task_name(self) -> str:
        if self.name:
            return self.name
        parts = ["build", self.recipe_kind]
        if self.accel:
            parts.append(f"accel{self.accel}")
        if self.arch != DEFAULT_ARCH:
            parts.append(self.arch)
        if self.framework:
            parts.append(f"framework{self.framework}")
        return "-".join(parts)

    def stash(self, artifact: str, pool: bool = False) -> str:
        return stash_name(artifact, self.accel, self.arch, self.framework, pool)

    def params(self) -> dict[str, str]:
        return {
            "accel": self.accel or "",
            "arch": self.arch,
            "framework": self.framework or "",
            "reference": "1" if self.reference else "0",
            "pool_support": "1" if self.pool_support else "0",
        }


@dataclass(frozen=True, slots=True)
class TestVariant:
    """One test configuration, consuming the artifacts of a build variant.

    ``artifact_accel`` selects which build's artifact is tested and
    ``host_accel`` the accelerator version installed on the test host
    (defaults to ``artifact_accel``).
    """

    __test__ = False

    target: str
    artifact: str = DEFAULT_ARTIFACT
    artifact_accel: str | None = None
    host_accel: str | None = None
    arch: str = DEFAULT_ARCH
    framework: str | None = None
    multi_accel: bool = False
    pool: bool = False
    labels: LabelSet | None = None
    name: str | None = None

    @property
    def effective_host_accel(self) -> str | None:
        return self.host_accel or self.artifact_accel

    @property
    def task_name(self) -> str:
        if self.name:
            return self.name
        parts = ["test", self.target]
        if self.multi_accel:
            parts.append("multi")
        if self.artifact_accel:
            parts.append(f"accel{self.artifact_accel}")
        if self.host_accel and self.host_accel != self.artifact_accel:
            parts.append(f"host{self.host_accel}")
        if self.arch != DEFAULT_ARCH:
            parts.append(self.arch)
        if self.framework:
            parts.append(f"framework{self.framework}")
        if self.pool:
            parts.append("pool")
        return "-".join(parts)

    @property
    def input_stash(self) -> str:
        return stash_name(self.artifact, self.artifact_accel, self.arch, self.framework, self.pool)

    def params(self) -> dict[str, str]:
        return {
            "target": self.target,
            "accel": self.artifact_accel or "",
            "host_accel": self.effective_host_accel or "",
            "arch": self.arch,
            "framework": self.framework or "",
            "multi_accel": "1" if self.multi_accel else "0",
            "pool": "1" if self.pool else "0",
        }


@dataclass(frozen=True, slots=True)
class MatrixSpec:
    """Declarative variant lists plus the recipes to run them."""

    build_variants: tuple[BuildVariant, ...] = ()
    test_variants: tuple[TestVariant, ...] = ()
    build_recipes: Mapping[str, BuildRecipe] = field(default_factory=dict)
    test_recipes: Mapping[str, TestRecipe] = field(default_factory=dict)
