"""Tests for matrixci.kernel.domain.labels and branch predicates."""

import pytest

from matrixci.kernel.domain.branch import PublishPolicy
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.exceptions import ValidationError


class TestLabelSet:
    def test_superset_satisfies_predicate(self) -> None:
        worker = LabelSet.of("linux", "gpu", "cuda11")
        assert worker.satisfies(LabelSet.of("linux", "gpu"))
        assert worker.satisfies(LabelSet())

    def test_missing_label_does_not_satisfy(self) -> None:
        assert not LabelSet.of("linux", "cpu").satisfies(LabelSet.of("linux", "gpu"))

    @pytest.mark.parametrize(
        "expression",
        ["linux && mgpu", "linux,mgpu", "linux mgpu", "  mgpu &&linux "],
    )
    def test_parse_expressions(self, expression: str) -> None:
        assert LabelSet.parse(expression) == LabelSet.of("linux", "mgpu")

    @pytest.mark.parametrize("label", ["GPU", "gpu!", "-gpu", ""])
    def test_invalid_labels_rejected(self, label: str) -> None:
        with pytest.raises(ValidationError, match="label"):
            LabelSet.of("linux", label)

    def test_union_and_iteration_are_sorted(self) -> None:
        merged = LabelSet.of("linux", "gpu").union(LabelSet.of("arm64"))
        assert list(merged) == ["arm64", "gpu", "linux"]
        assert len(merged) == 3
        assert str(merged) == "{arm64, gpu, linux}"

    def test_hashable_and_immutable(self) -> None:
        labels = LabelSet.of("linux")
        assert {labels: 1}[LabelSet.of("linux")] == 1
        with pytest.raises(AttributeError):
            labels.labels = frozenset()  # type: ignore[misc]


class TestWorker:
    def test_can_run(self) -> None:
        worker = Worker("gpu-01", LabelSet.of("linux", "gpu"))
        assert worker.can_run(LabelSet.of("gpu"))
        assert not worker.can_run(LabelSet.of("mgpu"))


class TestPublishPolicy:
    def test_defaults(self) -> None:
        policy = PublishPolicy()
        assert policy.allows("main-line")
        assert policy.allows("release/1.3")
        assert not policy.allows("feature-x")
        assert not policy.allows("main-line-2")

    def test_custom_mainline_and_pattern(self) -> None:
        policy = PublishPolicy(mainline="master", release_pattern="release_*")
        assert policy.allows("master")
        assert policy.allows("release_1.4.0")
        assert not policy.allows("main-line")
        assert not policy.allows("release/1.4")
