"""In-memory artifact store, the default for a single coordinator process."""

from matrixci.kernel.domain.artifacts import ArtifactEntry
from matrixci.kernel.exceptions import UnknownStashError
from matrixci.kernel.orchestration.components.artifact_store import BaseArtifactStore


class InMemoryArtifactStore(BaseArtifactStore):
    """Keeps entries as immutable objects in a dict keyed by run and stash.

    Examples
    --------
    Example usage::

        store = InMemoryArtifactStore(max_retained_runs=3)
        await store.put("main-line#7", "srcs", {"setup.py": b"..."})
        files = await store.get("main-line#7", "srcs")
    """

    def __init__(self, max_retained_runs: int = 1, retention_seconds: float | None = None) -> None:
        super().__init__(max_retained_runs=max_retained_runs, retention_seconds=retention_seconds)
        self._entries: dict[str, dict[str, ArtifactEntry]] = {}

    async def _write(self, entry: ArtifactEntry) -> None:
        self._entries.setdefault(entry.run_id, {})[entry.stash] = entry

    async def _read(self, run_id: str, stash: str) -> ArtifactEntry:
        try:
            return self._entries[run_id][stash]
        except KeyError:
            raise UnknownStashError(run_id, stash) from None

    async def _delete_run(self, run_id: str) -> None:
        self._entries.pop(run_id, None)
