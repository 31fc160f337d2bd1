"""Source fetcher adapters."""

from matrixci.adapters.source.git import GitError, GitSourceFetcher
from matrixci.adapters.source.mock import MockSourceFetcher

__all__ = ["GitError", "GitSourceFetcher", "MockSourceFetcher"]
