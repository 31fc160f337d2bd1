"""Port interface for run approval.

Initialize asks the approval gate whether a run may proceed (e.g. a pull
request from an untrusted author). A refusal fails the run before any build
work starts.
"""

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from matrixci.kernel.domain.run import Run


@runtime_checkable
class ApprovalGate(Protocol):
    """Port interface for approving runs."""

    @abstractmethod
    async def approve(self, run: "Run", author: str | None = None) -> bool:
        """Return True when the run may continue past Initialize."""
        ...
