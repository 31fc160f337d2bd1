"""Approval gate adapters."""

from matrixci.adapters.approval.gates import AutoApprove, TrustedAuthorsApproval

__all__ = ["AutoApprove", "TrustedAuthorsApproval"]
