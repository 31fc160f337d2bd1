"""Tests for the shell and mock task executors."""

import asyncio
import shutil
from pathlib import Path

import pytest

from matrixci.adapters.executors import LocalShellExecutor, MockTaskExecutor
from matrixci.kernel.ports.task_executor import CommandSpec, ExecutionOutcome, TaskExecutor


def command(workdir: Path, run: str, task: str = "build", step: str = "make", **env) -> CommandSpec:
    return CommandSpec(
        task_name=task,
        step_name=step,
        command=run,
        env=env,
        workdir=workdir,
        worker_id="linux-01",
    )


@pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
class TestLocalShellExecutor:
    @pytest.mark.asyncio
    async def test_runs_in_workdir_with_env(self, tmp_path: Path) -> None:
        executor = LocalShellExecutor(base_env={"PATH": "/usr/bin:/bin"})
        outcome = await executor.execute(
            command(tmp_path, 'echo "$MATRIXCI_ACCEL" > accel.txt && pwd', MATRIXCI_ACCEL="11.0")
        )
        assert outcome.succeeded
        assert (tmp_path / "accel.txt").read_text() == "11.0\n"
        assert outcome.logs.strip() == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_non_zero_exit_and_merged_stderr(self, tmp_path: Path) -> None:
        outcome = await LocalShellExecutor().execute(command(tmp_path, "echo oops >&2; exit 3"))
        assert outcome.exit_code == 3
        assert not outcome.succeeded
        assert "oops" in outcome.logs

    @pytest.mark.asyncio
    async def test_log_tail_is_kept(self, tmp_path: Path) -> None:
        executor = LocalShellExecutor(max_log_bytes=4)
        outcome = await executor.execute(command(tmp_path, "printf 'abcdefgh'"))
        assert outcome.logs == "efgh"

    @pytest.mark.asyncio
    async def test_cancellation_kills_process(self, tmp_path: Path) -> None:
        executor = LocalShellExecutor()
        task = asyncio.create_task(executor.execute(command(tmp_path, "sleep 30")))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=5)

    def test_implements_port(self) -> None:
        assert isinstance(LocalShellExecutor(), TaskExecutor)


class TestMockTaskExecutor:
    @pytest.mark.asyncio
    async def test_defaults_to_success(self, tmp_path: Path) -> None:
        executor = MockTaskExecutor()
        outcome = await executor.execute(command(tmp_path, "make"))
        assert outcome.succeeded
        assert [c.command for c in executor.calls] == ["make"]

    @pytest.mark.asyncio
    async def test_scripted_sequence_repeats_last(self, tmp_path: Path) -> None:
        executor = MockTaskExecutor(outcomes={"build/*": [1, 2, 0]})
        codes = [(await executor.execute(command(tmp_path, "make"))).exit_code for _ in range(4)]
        assert codes == [1, 2, 0, 0]

    @pytest.mark.asyncio
    async def test_first_matching_pattern_wins(self, tmp_path: Path) -> None:
        executor = MockTaskExecutor(
            outcomes={
                "test-*-gpu/*": ExecutionOutcome(exit_code=4, logs="gpu lost"),
                "test-*": 0,
            }
        )
        gpu = await executor.execute(command(tmp_path, "pytest", task="test-python-gpu"))
        cpu = await executor.execute(command(tmp_path, "pytest", task="test-python-cpu"))
        assert (gpu.exit_code, gpu.logs) == (4, "gpu lost")
        assert cpu.succeeded

    @pytest.mark.asyncio
    async def test_raises_scripted_exception(self, tmp_path: Path) -> None:
        executor = MockTaskExecutor(outcomes={"build/make": OSError("no space left")})
        with pytest.raises(OSError, match="no space left"):
            await executor.execute(command(tmp_path, "make"))

    @pytest.mark.asyncio
    async def test_writes_files_only_on_success(self, tmp_path: Path) -> None:
        files = {"build/*": {"dist/pkg.whl": b"wheel"}}
        ok_dir, failed_dir = tmp_path / "ok", tmp_path / "failed"
        ok_dir.mkdir()
        failed_dir.mkdir()

        await MockTaskExecutor(files=files).execute(command(ok_dir, "make"))
        await MockTaskExecutor(outcomes={"build/*": 1}, files=files).execute(
            command(failed_dir, "make")
        )

        assert (ok_dir / "dist" / "pkg.whl").read_bytes() == b"wheel"
        assert not (failed_dir / "dist").exists()

    @pytest.mark.asyncio
    async def test_tracks_concurrency_per_worker(self, tmp_path: Path) -> None:
        executor = MockTaskExecutor(delay=0.02)
        await asyncio.gather(*(executor.execute(command(tmp_path, "make")) for _ in range(3)))
        assert executor.max_active["linux-01"] == 3
        assert executor.active["linux-01"] == 0
        assert len(executor.calls_for("build")) == 3
