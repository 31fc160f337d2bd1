"""Port interface for source acquisition.

Used only inside the retry-wrapped Initialize step. The fetcher fills
``dest`` with the working tree of ``commit`` and reports the resolved
commit identifier.
"""

from abc import abstractmethod
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class WorkingTree(BaseModel):
    """A checked-out source tree."""

    model_config = ConfigDict(frozen=True)

    path: Path
    commit: str


@runtime_checkable
class SourceFetcher(Protocol):
    """Port interface for fetching a commit's working tree."""

    @abstractmethod
    async def fetch(self, branch: str, commit: str | None, dest: Path) -> WorkingTree:
        """Check out ``commit`` (or the tip of ``branch`` when None) into ``dest``.

        Raises
        ------
        Exception
            Any failure; the caller retries and cleans ``dest`` between attempts.
        """
        ...
