"""Write-once, run-scoped artifact store with bounded retention.

:class:`BaseArtifactStore` implements the store contract (single writer per
key, isolation between runs, retention of finished runs) on top of four
storage primitives that adapters provide. The in-memory and local-directory
adapters live in ``matrixci.adapters.artifacts``.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Mapping

from matrixci.kernel.domain.artifacts import ArtifactEntry, FileSet
from matrixci.kernel.exceptions import DuplicateStashError, UnknownStashError, ValidationError
from matrixci.kernel.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_RETAINED_RUNS = 1


class BaseArtifactStore(ABC):
    """Shared bookkeeping for artifact store adapters.

    Retention keeps at most ``max_retained_runs`` finished runs (oldest
    evicted first) and, when ``retention_seconds`` is set, evicts finished
    runs older than that. Runs still in flight are never evicted.

    Parameters
    ----------
    max_retained_runs : int
        How many finished runs keep their artifacts
    retention_seconds : float | None
        Optional age limit for finished runs' artifacts
    """

    def __init__(
        self,
        max_retained_runs: int = DEFAULT_MAX_RETAINED_RUNS,
        retention_seconds: float | None = None,
    ) -> None:
        if max_retained_runs < 0:
            raise ValidationError("max_retained_runs", "must not be negative", max_retained_runs)
        self.max_retained_runs = max_retained_runs
        self.retention_seconds = retention_seconds
        self._lock = asyncio.Lock()
        # run_id -> stashes fully written
        self._written: dict[str, set[str]] = {}
        # (run_id, stash) claimed by a writer still copying data
        self._pending: set[tuple[str, str]] = set()
        # finished runs, oldest first, with their completion time
        self._terminal: OrderedDict[str, float] = OrderedDict()

    # ------------------------------------------------------------------
    # Storage primitives implemented by adapters
    # ------------------------------------------------------------------

    @abstractmethod
    async def _write(self, entry: ArtifactEntry) -> None: ...

    @abstractmethod
    async def _read(self, run_id: str, stash: str) -> ArtifactEntry: ...

    @abstractmethod
    async def _delete_run(self, run_id: str) -> None: ...

    # ------------------------------------------------------------------
    # Store contract
    # ------------------------------------------------------------------

    async def put(
        self,
        run_id: str,
        stash: str,
        files: Mapping[str, bytes],
        producer: str | None = None,
    ) -> ArtifactEntry:
        """Write a stash once. Concurrent writers of the same key: only one wins."""
        entry = ArtifactEntry(run_id=run_id, stash=stash, files=files, producer=producer)
        key = (run_id, stash)

        async with self._lock:
            if key in self._pending or stash in self._written.get(run_id, ()):
                raise DuplicateStashError(run_id, stash)
            if run_id in self._terminal:
                raise ValidationError("run_id", "run already finished, stash rejected", run_id)
            self._pending.add(key)

        try:
            await self._write(entry)
        except BaseException:
            async with self._lock:
                self._pending.discard(key)
            raise

        async with self._lock:
            self._pending.discard(key)
            self._written.setdefault(run_id, set()).add(stash)

        logger.debug(
            "Stashed '{stash}' ({count} files, {size} bytes) from {producer}",
            stash=stash,
            count=len(entry.files),
            size=entry.size,
            producer=producer or "-",
        )
        return entry

    async def entry(self, run_id: str, stash: str) -> ArtifactEntry:
        if stash not in self._written.get(run_id, ()):
            raise UnknownStashError(run_id, stash)
        return await self._read(run_id, stash)

    async def get(self, run_id: str, stash: str) -> FileSet:
        return (await self.entry(run_id, stash)).files

    async def has(self, run_id: str, stash: str) -> bool:
        return stash in self._written.get(run_id, ())

    async def stashes(self, run_id: str) -> list[str]:
        return sorted(self._written.get(run_id, ()))

    async def runs(self) -> list[str]:
        """Run ids that currently hold artifacts."""
        return list(self._written)

    async def mark_terminal(self, run_id: str) -> list[str]:
        async with self._lock:
            self._terminal[run_id] = time.time()
            self._terminal.move_to_end(run_id)
            expired = self._select_expired()
            for expired_id in expired:
                self._terminal.pop(expired_id, None)
                self._written.pop(expired_id, None)

        for expired_id in expired:
            await self._delete_run(expired_id)
            logger.info("Evicted artifacts of run '{run_id}'", run_id=expired_id)
        return expired

    def _select_expired(self) -> list[str]:
        expired: list[str] = []
        if self.retention_seconds is not None:
            cutoff = time.time() - self.retention_seconds
            expired.extend(rid for rid, done_at in self._terminal.items() if done_at < cutoff)
        overflow = len(self._terminal) - len(expired) - self.max_retained_runs
        for rid in self._terminal:
            if overflow <= 0:
                break
            if rid not in expired:
                expired.append(rid)
                overflow -= 1
        return expired
