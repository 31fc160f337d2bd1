"""Port interface for publishing artifacts.

Only invoked by publish sub-steps, and only when the run's branch passes the
publish policy.
"""

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from matrixci.kernel.domain.artifacts import ArtifactEntry


@runtime_checkable
class Publisher(Protocol):
    """Port interface for artifact upload destinations."""

    @abstractmethod
    async def upload(self, artifact: "ArtifactEntry", destination: str) -> None:
        """Upload every file of ``artifact`` under ``destination``."""
        ...
