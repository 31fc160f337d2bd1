"""Tests for publisher and approval gate adapters."""

from pathlib import Path

import pytest

from matrixci.adapters.approval import AutoApprove, TrustedAuthorsApproval
from matrixci.adapters.publishers import LocalDirectoryPublisher, RecordingPublisher
from matrixci.kernel.domain.artifacts import ArtifactEntry
from matrixci.kernel.domain.run import Run
from matrixci.kernel.exceptions import ValidationError


def entry(run_id: str = "main-line#3") -> ArtifactEntry:
    return ArtifactEntry(
        run_id=run_id,
        stash="wheel@accel:11.0",
        files={"dist/xgboost.whl": b"wheel", "dist/README": b"readme"},
    )


class TestLocalDirectoryPublisher:
    @pytest.mark.asyncio
    async def test_copies_files(self, tmp_path: Path) -> None:
        publisher = LocalDirectoryPublisher(tmp_path)
        await publisher.upload(entry(), "nightly/main-line")
        assert (tmp_path / "nightly/main-line/dist/xgboost.whl").read_bytes() == b"wheel"
        assert (tmp_path / "nightly/main-line/dist/README").read_bytes() == b"readme"

    def test_url_destinations_map_to_directories(self, tmp_path: Path) -> None:
        publisher = LocalDirectoryPublisher(tmp_path)
        assert publisher.target_dir("s3://bucket/x") == tmp_path / "s3" / "bucket" / "x"
        assert publisher.target_dir("/") == tmp_path

    def test_escaping_destination_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            LocalDirectoryPublisher(tmp_path).target_dir("../outside")


class TestRecordingPublisher:
    @pytest.mark.asyncio
    async def test_records_uploads(self) -> None:
        publisher = RecordingPublisher()
        await publisher.upload(entry("main-line#3"), "s3://b/main-line")
        await publisher.upload(entry("main-line#4"), "s3://b/main-line")

        [upload] = publisher.for_run("main-line#3")
        assert upload.destination == "s3://b/main-line"
        assert upload.stash == "wheel@accel:11.0"
        assert set(upload.files) == {"dist/xgboost.whl", "dist/README"}

    @pytest.mark.asyncio
    async def test_failing(self) -> None:
        publisher = RecordingPublisher(fail=True)
        with pytest.raises(ConnectionError):
            await publisher.upload(entry(), "s3://b")
        assert publisher.uploads == []


class TestApproval:
    @pytest.mark.asyncio
    async def test_auto_approve(self) -> None:
        assert await AutoApprove().approve(Run("feature-x", 1), None)

    @pytest.mark.asyncio
    async def test_trusted_authors(self) -> None:
        gate = TrustedAuthorsApproval({"alice"}, trusted_branches={"main-line"})
        assert await gate.approve(Run("feature-x", 1), "alice")
        assert not await gate.approve(Run("feature-x", 2), "mallory")
        assert not await gate.approve(Run("feature-x", 3), None)
        assert await gate.approve(Run("main-line", 1), "mallory")
