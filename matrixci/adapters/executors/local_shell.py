"""Executor that runs commands in a local shell."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping

from matrixci.kernel.logging import get_logger
from matrixci.kernel.ports.task_executor import CommandSpec, ExecutionOutcome, TaskExecutor
from matrixci.kernel.utils.timer import Timer

logger = get_logger(__name__)


class LocalShellExecutor(TaskExecutor):
    """Run every command on this machine with ``/bin/sh -c``.

    Every worker id maps to the local host; label matching still decides
    which tasks may run concurrently. stdout and stderr are merged into the
    outcome's logs.

    Parameters
    ----------
    shell : str | None
        Shell executable (default: the platform's ``/bin/sh``)
    base_env : Mapping[str, str] | None
        Environment the step variables are layered over (default: ``os.environ``)
    max_log_bytes : int
        Keep only the tail of very long logs
    """

    def __init__(
        self,
        shell: str | None = None,
        base_env: Mapping[str, str] | None = None,
        max_log_bytes: int = 1_000_000,
    ) -> None:
        self.shell = shell
        self.base_env = dict(base_env) if base_env is not None else None
        self.max_log_bytes = max_log_bytes

    def _env(self, spec: CommandSpec) -> dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        env.update(spec.env)
        return env

    async def execute(self, spec: CommandSpec) -> ExecutionOutcome:
        timer = Timer()
        logger.debug(
            "[{worker}] {task}/{step}: {command}",
            worker=spec.worker_id,
            task=spec.task_name,
            step=spec.step_name,
            command=spec.command,
        )
        proc = await asyncio.create_subprocess_shell(
            spec.command,
            cwd=spec.workdir,
            env=self._env(spec),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            executable=self.shell,
        )
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # run deadline or shutdown: do not leave the process behind
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        logs = stdout[-self.max_log_bytes :].decode("utf-8", errors="replace")
        exit_code = proc.returncode if proc.returncode is not None else -1
        if exit_code != 0:
            logger.debug(
                "{task}/{step} exited with {code}: {tail}",
                task=spec.task_name,
                step=spec.step_name,
                code=exit_code,
                tail=logs[-500:],
            )
        return ExecutionOutcome(exit_code=exit_code, logs=logs, duration_ms=timer.duration_ms)
