"""Artifact store adapters."""

from matrixci.adapters.artifacts.in_memory import InMemoryArtifactStore
from matrixci.adapters.artifacts.local import LocalArtifactStore

__all__ = ["InMemoryArtifactStore", "LocalArtifactStore"]
