"""Publisher that only records uploads."""

from __future__ import annotations

from dataclasses import dataclass

from matrixci.kernel.domain.artifacts import ArtifactEntry
from matrixci.kernel.ports.publisher import Publisher


@dataclass(frozen=True, slots=True)
class Upload:
    run_id: str
    stash: str
    destination: str
    files: tuple[str, ...]


class RecordingPublisher(Publisher):
    """Keeps a list of every upload; used by tests and ``--dry-run``.

    Parameters
    ----------
    fail : bool
        Raise on every upload instead of recording it
    """

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.uploads: list[Upload] = []

    async def upload(self, artifact: ArtifactEntry, destination: str) -> None:
        if self.fail:
            raise ConnectionError(f"upload of '{artifact.stash}' to {destination} refused")
        self.uploads.append(
            Upload(
                run_id=artifact.run_id,
                stash=artifact.stash,
                destination=destination,
                files=tuple(artifact.files),
            )
        )

    def for_run(self, run_id: str) -> list[Upload]:
        return [u for u in self.uploads if u.run_id == run_id]
