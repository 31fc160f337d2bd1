"""Mock task executor for tests and dry runs."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Mapping, Sequence
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING

from matrixci.kernel.ports.task_executor import CommandSpec, ExecutionOutcome, TaskExecutor

if TYPE_CHECKING:
    from pathlib import Path

Outcome = int | ExecutionOutcome | BaseException
Script = Outcome | Sequence[Outcome]


def _as_outcome(value: Outcome) -> ExecutionOutcome:
    if isinstance(value, ExecutionOutcome):
        return value
    return ExecutionOutcome(exit_code=int(value), logs=f"exit {value}")


class MockTaskExecutor(TaskExecutor):
    """Scripted executor that never starts a process.

    Outcomes and files are looked up by ``"<task>/<step>"`` patterns
    (``fnmatch`` syntax, first match wins). An outcome is an exit code, an
    :class:`ExecutionOutcome`, or an exception to raise; a list of outcomes
    is consumed one per call, the last one repeating.

    Parameters
    ----------
    outcomes : Mapping[str, Script] | None
        Pattern -> scripted outcome(s); unmatched commands exit 0
    files : Mapping[str, Mapping[str, bytes]] | None
        Pattern -> files written into the workspace on success, so output
        stashes have something to collect
    delay : float
        Simulated command duration in seconds

    Examples
    --------
    Fail the GPU python tests, pass everything else::

        executor = MockTaskExecutor(
            outcomes={"test-python-*accel11.0*/*": 1},
            files={"build-*/build": {"dist/pkg.whl": b"wheel"}},
        )
        assert [c.task_name for c in executor.calls] == [...]
    """

    def __init__(
        self,
        outcomes: Mapping[str, Script] | None = None,
        files: Mapping[str, Mapping[str, bytes]] | None = None,
        delay: float = 0.0,
    ) -> None:
        self._outcomes = dict(outcomes or {})
        self._files = dict(files or {})
        self.delay = delay
        self.calls: list[CommandSpec] = []
        self._call_counts: dict[str, int] = defaultdict(int)
        # worker id -> commands currently running on it
        self.active: dict[str, int] = defaultdict(int)
        self.max_active: dict[str, int] = defaultdict(int)

    @staticmethod
    def _match(table: Mapping[str, object], key: str) -> str | None:
        return next((pattern for pattern in table if fnmatchcase(key, pattern)), None)

    def _next_outcome(self, key: str) -> Outcome:
        pattern = self._match(self._outcomes, key)
        if pattern is None:
            return 0
        script = self._outcomes[pattern]
        if isinstance(script, Sequence) and not isinstance(script, str):
            index = self._call_counts[pattern]
            self._call_counts[pattern] += 1
            return script[min(index, len(script) - 1)]
        return script

    def _write_files(self, key: str, workdir: Path) -> None:
        pattern = self._match(self._files, key)
        if pattern is None:
            return
        for rel_path, content in self._files[pattern].items():
            target = workdir / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

    def calls_for(self, task_name: str) -> list[CommandSpec]:
        return [c for c in self.calls if c.task_name == task_name]

    async def execute(self, spec: CommandSpec) -> ExecutionOutcome:
        key = f"{spec.task_name}/{spec.step_name}"
        self.calls.append(spec)
        self.active[spec.worker_id] += 1
        self.max_active[spec.worker_id] = max(
            self.max_active[spec.worker_id], self.active[spec.worker_id]
        )
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            else:
                await asyncio.sleep(0)
            scripted = self._next_outcome(key)
            if isinstance(scripted, BaseException):
                raise scripted
            outcome = _as_outcome(scripted)
            if outcome.succeeded:
                await asyncio.to_thread(self._write_files, key, spec.workdir)
            return outcome
        finally:
            self.active[spec.worker_id] -= 1
