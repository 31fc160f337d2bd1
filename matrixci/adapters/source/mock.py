"""Scripted source fetcher for tests and dry runs."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path

from matrixci.kernel.ports.source import SourceFetcher, WorkingTree


class MockSourceFetcher(SourceFetcher):
    """Writes a fixed file tree instead of talking to a repository.

    Parameters
    ----------
    files : Mapping[str, bytes] | None
        Tree written into ``dest`` on every successful fetch
    commit : str
        Commit reported when the run does not pin one
    fail_times : int
        Number of leading calls that raise ``ConnectionError`` (after
        writing a partial tree, so cleanup between attempts is visible)
    hang_times : int
        Number of leading calls, after the failing ones, that never return
    """

    def __init__(
        self,
        files: Mapping[str, bytes] | None = None,
        commit: str = "0" * 40,
        fail_times: int = 0,
        hang_times: int = 0,
    ) -> None:
        self.files = dict(files or {"README.md": b"matrixci\n"})
        self.commit = commit
        self.fail_times = fail_times
        self.hang_times = hang_times
        self.call_count = 0
        self.calls: list[tuple[str, str | None]] = []
        # whether dest was empty at the start of each call
        self.started_clean: list[bool] = []

    def _write(self, dest: Path, files: Mapping[str, bytes]) -> None:
        for rel_path, content in files.items():
            target = dest / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

    async def fetch(self, branch: str, commit: str | None, dest: Path) -> WorkingTree:
        self.call_count += 1
        self.calls.append((branch, commit))
        dest.mkdir(parents=True, exist_ok=True)
        self.started_clean.append(not any(dest.iterdir()))

        if self.call_count <= self.fail_times:
            await asyncio.to_thread(self._write, dest, {".partial": b"interrupted"})
            raise ConnectionError(f"simulated fetch failure {self.call_count}/{self.fail_times}")
        if self.call_count <= self.fail_times + self.hang_times:
            await asyncio.Event().wait()

        await asyncio.to_thread(self._write, dest, self.files)
        return WorkingTree(path=dest, commit=commit or self.commit)
