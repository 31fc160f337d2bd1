"""Worker pool with label-based matching.

Tasks lease a worker whose label set contains the task's predicate. A leased
worker is held by exactly one task until released; ``lease()`` guarantees the
release on every exit path, including task failure and cancellation.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.exceptions import ConfigurationError, NoEligibleWorkerError, OrchestratorError
from matrixci.kernel.logging import get_logger

logger = get_logger(__name__)

_lease_ids = itertools.count(1)


@dataclass(frozen=True, slots=True)
class WorkerHandle:
    """Proof of an exclusive lease on one worker."""

    worker: Worker
    lease_id: int
    holder: str | None = None

    @property
    def worker_id(self) -> str:
        return self.worker.worker_id


class WorkerPool:
    """Pool of leasable workers.

    No fairness is promised beyond mutual exclusion: when a worker is
    released, every waiter re-checks the free set and the first one whose
    predicate matches takes it.

    Examples
    --------
    Example usage::

        pool = WorkerPool([
            Worker("cpu-01", LabelSet.of("linux", "cpu")),
            Worker("gpu-01", LabelSet.of("linux", "gpu")),
        ])
        async with pool.lease(LabelSet.of("linux", "gpu"), holder="test-python-gpu") as handle:
            ...
    """

    def __init__(self, workers: Iterable[Worker] = ()) -> None:
        self._workers: dict[str, Worker] = {}
        self._busy: dict[str, WorkerHandle] = {}
        self._condition = asyncio.Condition()
        for worker in workers:
            self.add(worker)

    def add(self, worker: Worker) -> None:
        if worker.worker_id in self._workers:
            raise ConfigurationError("worker pool", f"duplicate worker id '{worker.worker_id}'")
        self._workers[worker.worker_id] = worker

    @property
    def workers(self) -> list[Worker]:
        return list(self._workers.values())

    @property
    def busy(self) -> dict[str, str | None]:
        """Worker id -> holder of every active lease."""
        return {wid: handle.holder for wid, handle in self._busy.items()}

    def eligible(self, labels: LabelSet) -> list[Worker]:
        return [w for w in self._workers.values() if w.can_run(labels)]

    def check_satisfiable(self, labels: LabelSet) -> None:
        """Raise NoEligibleWorkerError if no registered worker could ever match."""
        if not self.eligible(labels):
            raise NoEligibleWorkerError(labels, sorted(self._workers))

    def _take_free(self, labels: LabelSet, holder: str | None) -> WorkerHandle | None:
        for worker in self._workers.values():
            if worker.worker_id not in self._busy and worker.can_run(labels):
                handle = WorkerHandle(worker, next(_lease_ids), holder)
                self._busy[worker.worker_id] = handle
                return handle
        return None

    async def acquire(self, labels: LabelSet, holder: str | None = None) -> WorkerHandle:
        """Lease a free worker satisfying ``labels``, waiting until one is free.

        Raises
        ------
        NoEligibleWorkerError
            Immediately, if no registered worker satisfies ``labels``.
        """
        self.check_satisfiable(labels)
        async with self._condition:
            handle = self._take_free(labels, holder)
            while handle is None:
                logger.debug(
                    "{holder} waiting for a worker with labels {labels}",
                    holder=holder or "task",
                    labels=str(labels),
                )
                await self._condition.wait()
                handle = self._take_free(labels, holder)
        logger.debug(
            "Leased worker '{worker}' to {holder}",
            worker=handle.worker_id,
            holder=holder or "task",
        )
        return handle

    async def release(self, handle: WorkerHandle) -> None:
        async with self._condition:
            current = self._busy.get(handle.worker_id)
            if current is None or current.lease_id != handle.lease_id:
                raise OrchestratorError(
                    f"Worker '{handle.worker_id}' is not leased under lease {handle.lease_id}"
                )
            del self._busy[handle.worker_id]
            self._condition.notify_all()
        logger.debug("Released worker '{worker}'", worker=handle.worker_id)

    @asynccontextmanager
    async def lease(self, labels: LabelSet, holder: str | None = None) -> AsyncIterator[WorkerHandle]:
        handle = await self.acquire(labels, holder)
        try:
            yield handle
        finally:
            # shield so a cancelled task still returns its worker
            await asyncio.shield(self.release(handle))
