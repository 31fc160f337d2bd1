"""Approval gate implementations."""

from __future__ import annotations

from collections.abc import Iterable

from matrixci.kernel.domain.run import Run
from matrixci.kernel.logging import get_logger
from matrixci.kernel.ports.approval import ApprovalGate

logger = get_logger(__name__)


class AutoApprove(ApprovalGate):
    """Approves every run."""

    async def approve(self, run: Run, author: str | None = None) -> bool:
        return True


class TrustedAuthorsApproval(ApprovalGate):
    """Approves runs whose author is trusted.

    Runs on publishable branches (``trusted_branches``) are always approved:
    only reviewed code lands there.
    """

    def __init__(self, authors: Iterable[str], trusted_branches: Iterable[str] = ()) -> None:
        self.authors = frozenset(authors)
        self.trusted_branches = frozenset(trusted_branches)

    async def approve(self, run: Run, author: str | None = None) -> bool:
        if run.branch in self.trusted_branches:
            return True
        approved = author is not None and author in self.authors
        if not approved:
            logger.warning(
                "Run '{run_id}' by {author} needs approval",
                run_id=run.run_id,
                author=author or "unknown author",
            )
        return approved
