"""Source fetcher backed by the ``git`` command line."""

from __future__ import annotations

import asyncio
from pathlib import Path

from matrixci.kernel.exceptions import MatrixCIError
from matrixci.kernel.logging import get_logger
from matrixci.kernel.ports.source import SourceFetcher, WorkingTree

logger = get_logger(__name__)


class GitError(MatrixCIError):
    """A git command failed."""

    def __init__(self, args: tuple[str, ...], code: int, output: str) -> None:
        super().__init__(f"git {' '.join(args)} exited with {code}: {output.strip()[-500:]}")
        self.code = code


class GitSourceFetcher(SourceFetcher):
    """Fetch one commit of ``repository`` into an empty directory.

    The tree is created with ``git init`` + ``git fetch`` of a single ref, so
    each attempt is independent of the previous one; the caller wipes
    ``dest`` between attempts.

    Parameters
    ----------
    repository : str
        Remote URL or local path
    depth : int | None
        Shallow fetch depth; None fetches full history
    git : str
        git executable
    """

    def __init__(self, repository: str, depth: int | None = 1, git: str = "git") -> None:
        self.repository = repository
        self.depth = depth
        self.git = git

    async def _git(self, cwd: Path, *args: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            self.git,
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            # attempt deadline hit
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        output = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise GitError(args, proc.returncode or -1, output)
        return output

    async def fetch(self, branch: str, commit: str | None, dest: Path) -> WorkingTree:
        ref = commit or branch
        logger.info(
            "Fetching {ref} from {repository}", ref=ref, repository=self.repository
        )
        dest.mkdir(parents=True, exist_ok=True)
        await self._git(dest, "init", "--quiet")
        fetch_args = ["fetch", "--quiet", "--no-tags"]
        if self.depth is not None:
            fetch_args.append(f"--depth={self.depth}")
        await self._git(dest, *fetch_args, self.repository, ref)
        await self._git(dest, "checkout", "--quiet", "--detach", "FETCH_HEAD")
        sha = (await self._git(dest, "rev-parse", "HEAD")).strip()
        return WorkingTree(path=dest, commit=sha)
