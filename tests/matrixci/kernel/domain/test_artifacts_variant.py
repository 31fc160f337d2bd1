"""Tests for artifact entries and variant naming."""

import pytest

from matrixci.kernel.domain.artifacts import ArtifactEntry, normalize_path
from matrixci.kernel.domain.variant import BuildVariant, TestVariant, stash_name
from matrixci.kernel.exceptions import ValidationError


class TestArtifactEntry:
    def test_files_are_read_only_and_sorted(self) -> None:
        entry = ArtifactEntry(run_id="r#1", stash="srcs", files={"b.txt": b"b", "a/x.txt": b"a"})
        assert list(entry.files) == ["a/x.txt", "b.txt"]
        with pytest.raises(TypeError):
            entry.files["c"] = b"c"  # type: ignore[index]

    def test_size_and_digest(self) -> None:
        one = ArtifactEntry(run_id="r#1", stash="s", files={"a": b"12", "b": b"345"})
        two = ArtifactEntry(run_id="r#2", stash="s", files={"b": b"345", "a": b"12"})
        assert one.size == 5
        assert one.digest() == two.digest()
        changed = ArtifactEntry(run_id="r#1", stash="s", files={"a": b"12", "b": b"346"})
        assert changed.digest() != one.digest()

    def test_content_must_be_bytes(self) -> None:
        with pytest.raises(ValidationError, match="content must be bytes"):
            ArtifactEntry(run_id="r#1", stash="s", files={"a": "text"})  # type: ignore[dict-item]

    @pytest.mark.parametrize("path", ["/etc/passwd", "../up", "a/../../b", ""])
    def test_escaping_paths_rejected(self, path: str) -> None:
        with pytest.raises(ValidationError):
            normalize_path(path)

    def test_normalize_path(self) -> None:
        assert normalize_path("dist\\pkg.whl") == "dist/pkg.whl"
        assert normalize_path("./dist//pkg.whl") == "dist/pkg.whl"


class TestVariantNaming:
    @pytest.mark.parametrize(
        ("kwargs", "expected"),
        [
            ({}, "wheel@cpu"),
            ({"accel": "11.0"}, "wheel@accel:11.0"),
            ({"arch": "aarch64"}, "wheel@cpu,arch:aarch64"),
            ({"framework": "3.0.1"}, "wheel@cpu,framework:3.0.1"),
            ({"accel": "11.0", "pool": True}, "wheel@accel:11.0,pool"),
        ],
    )
    def test_stash_name(self, kwargs, expected) -> None:
        assert stash_name("wheel", **kwargs) == expected

    def test_build_variant_names(self) -> None:
        assert BuildVariant().task_name == "build-cpu"
        assert BuildVariant(accel="11.0").task_name == "build-gpu-accel11.0"
        assert BuildVariant(arch="aarch64").task_name == "build-cpu-aarch64"
        assert BuildVariant(kind="jvm", framework="3.0.1").task_name == "build-jvm-framework3.0.1"
        assert BuildVariant(name="custom").task_name == "custom"

    def test_test_variant_consumes_build_stash(self) -> None:
        build = BuildVariant(accel="10.1")
        test = TestVariant("python", artifact_accel="10.1", host_accel="11.0")
        assert test.input_stash == build.stash("wheel")
        assert test.task_name == "test-python-accel10.1-host11.0"
        assert test.params()["host_accel"] == "11.0"

    def test_host_accel_defaults_to_artifact_accel(self) -> None:
        test = TestVariant("python", artifact_accel="11.0", multi_accel=True)
        assert test.effective_host_accel == "11.0"
        assert test.task_name == "test-python-multi-accel11.0"
