"""Port interface for the run-scoped artifact store."""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from matrixci.kernel.domain.artifacts import ArtifactEntry, FileSet


@runtime_checkable
class ArtifactStore(Protocol):
    """Content-keyed store for files handed from one task to another.

    Contract
    --------
    - ``put`` is write-once per ``(run_id, stash)``; a second write raises
      ``DuplicateStashError``
    - ``get`` of a never-written stash raises ``UnknownStashError``
    - entries of one run are never visible through another run id
    - ``mark_terminal`` hands a finished run over to retention
    """

    @abstractmethod
    async def put(
        self,
        run_id: str,
        stash: str,
        files: Mapping[str, bytes],
        producer: str | None = None,
    ) -> ArtifactEntry: ...

    @abstractmethod
    async def get(self, run_id: str, stash: str) -> FileSet: ...

    @abstractmethod
    async def entry(self, run_id: str, stash: str) -> ArtifactEntry: ...

    @abstractmethod
    async def stashes(self, run_id: str) -> list[str]: ...

    @abstractmethod
    async def mark_terminal(self, run_id: str) -> list[str]:
        """Record that a run finished; returns the run ids evicted by retention."""
        ...
