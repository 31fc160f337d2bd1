"""Tests for the Run lifecycle and RunResult."""

import pytest

from matrixci.kernel.domain.run import (
    SUPERSEDED,
    Run,
    RunStatus,
    StageResult,
    StageStatus,
    TaskResult,
    TaskStatus,
)
from matrixci.kernel.exceptions import OrchestratorError, SupersededError


class TestRun:
    def test_run_id(self) -> None:
        assert Run(branch="main-line", sequence=7).run_id == "main-line#7"

    def test_lifecycle(self) -> None:
        run = Run(branch="main-line", sequence=1)
        run.start()
        assert run.status == RunStatus.RUNNING
        assert run.finish(RunStatus.SUCCEEDED)
        assert run.is_terminal

    def test_terminal_status_never_changes(self) -> None:
        run = Run(branch="main-line", sequence=1)
        run.start()
        assert run.finish(RunStatus.FAILED, "boom")
        assert not run.finish(RunStatus.SUCCEEDED)
        assert not run.supersede("main-line#2")
        assert run.status == RunStatus.FAILED
        assert run.reason == "boom"
        assert run.superseded_by is None

    def test_cannot_start_twice(self) -> None:
        run = Run(branch="main-line", sequence=1)
        run.start()
        with pytest.raises(OrchestratorError):
            run.start()

    def test_finish_requires_terminal_status(self) -> None:
        with pytest.raises(OrchestratorError, match="not a terminal"):
            Run(branch="b", sequence=1).finish(RunStatus.RUNNING)

    def test_supersede(self) -> None:
        run = Run(branch="main-line", sequence=5)
        assert run.supersede("main-line#7")
        assert run.superseded
        assert run.status == RunStatus.ABORTED
        assert run.reason == SUPERSEDED

    def test_commit_is_set_once(self) -> None:
        run = Run(branch="main-line", sequence=1)
        run.resolve_commit("abc123")
        with pytest.raises(OrchestratorError, match="already resolved"):
            run.resolve_commit("def456")
        assert run.commit == "abc123"


class TestRunResult:
    def _failed_run(self) -> Run:
        run = Run(branch="feature-x", sequence=3)
        run.start()
        build = StageResult(name="Build", status=StageStatus.SUCCEEDED)
        test = StageResult(name="Test", status=StageStatus.FAILED)
        test.record(TaskResult(name="test-cpu", status=TaskStatus.SUCCEEDED))
        test.record(
            TaskResult(name="test-gpu", status=TaskStatus.FAILED, failed_step="pytest", error="x")
        )
        test.record(TaskResult(name="test-arm", status=TaskStatus.FAILED, failed_step="pytest"))
        run.stages = {"Build": build, "Test": test}
        run.finish(RunStatus.FAILED, "stage 'Test' failed")
        return run

    def test_names_failed_stage_task_and_step(self) -> None:
        result = self._failed_run().result()
        assert result.failed_stage == "Test"
        assert result.failed_task == "test-gpu"
        assert result.failed_step == "pytest"
        assert result.duration_ms is not None

    def test_raise_for_status_failed(self) -> None:
        with pytest.raises(OrchestratorError, match="at Test/test-gpu/pytest"):
            self._failed_run().result().raise_for_status()

    def test_raise_for_status_superseded(self) -> None:
        run = Run(branch="main-line", sequence=5)
        run.supersede("main-line#7")
        with pytest.raises(SupersededError) as exc_info:
            run.result().raise_for_status()
        assert exc_info.value.superseded_by == "main-line#7"

    def test_raise_for_status_succeeded(self) -> None:
        run = Run(branch="main-line", sequence=1)
        run.start()
        run.finish(RunStatus.SUCCEEDED)
        result = run.result()
        result.raise_for_status()
        assert result.succeeded
        assert not result.superseded
