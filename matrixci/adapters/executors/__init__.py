"""Task executor adapters."""

from matrixci.adapters.executors.local_shell import LocalShellExecutor
from matrixci.adapters.executors.mock import MockTaskExecutor

__all__ = ["LocalShellExecutor", "MockTaskExecutor"]
