"""Capability labels and worker identities.

Label predicates are sets, not strings: a task requiring ``{linux, gpu}``
can run on any worker whose labels contain both. Each label is validated on
construction so a typo in a pipeline file fails at load time instead of
leaving a task waiting for a worker that does not exist.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from matrixci.kernel.exceptions import ValidationError

_LABEL_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_.-]*$")


@dataclass(frozen=True, slots=True)
class LabelSet:
    """Immutable set of capability labels.

    Examples
    --------
    >>> worker = LabelSet.of("linux", "gpu", "cuda11")
    >>> worker.satisfies(LabelSet.of("linux", "gpu"))
    True
    >>> LabelSet.parse("linux && mgpu")
    LabelSet('linux', 'mgpu')
    """

    labels: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        for label in self.labels:
            if not isinstance(label, str) or not _LABEL_PATTERN.match(label):
                raise ValidationError(
                    "label", "must be lowercase letters, digits, '_', '-' or '.'", value=label
                )

    @classmethod
    def of(cls, *labels: str) -> LabelSet:
        return cls(frozenset(labels))

    @classmethod
    def from_iterable(cls, labels: Iterable[str]) -> LabelSet:
        return cls(frozenset(labels))

    @classmethod
    def parse(cls, expression: str) -> LabelSet:
        """Parse a Jenkins-style ``a && b`` or comma/space separated label expression."""
        parts = re.split(r"\s*(?:&&|,|\s)\s*", expression.strip())
        return cls(frozenset(p for p in parts if p))

    def satisfies(self, predicate: LabelSet) -> bool:
        """True when every label of ``predicate`` is present in this set."""
        return predicate.labels <= self.labels

    def union(self, other: LabelSet) -> LabelSet:
        return LabelSet(self.labels | other.labels)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.labels))

    def __len__(self) -> int:
        return len(self.labels)

    def __str__(self) -> str:
        return "{" + ", ".join(self) + "}"

    def __repr__(self) -> str:
        return "LabelSet(" + ", ".join(repr(label) for label in self) + ")"


@dataclass(frozen=True, slots=True)
class Worker:
    """An execution node the engine can lease."""

    worker_id: str
    labels: LabelSet

    def can_run(self, predicate: LabelSet) -> bool:
        return self.labels.satisfies(predicate)
