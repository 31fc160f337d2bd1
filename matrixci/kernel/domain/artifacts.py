"""Artifact entries passed between tasks through the artifact store."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from types import MappingProxyType

from matrixci.kernel.exceptions import ValidationError

# Relative path -> file content
FileSet = Mapping[str, bytes]


def normalize_path(path: str) -> str:
    """Normalize a stash-relative path, rejecting absolute paths and ``..`` escapes."""
    posix = PurePosixPath(path.replace("\\", "/"))
    if posix.is_absolute() or ".." in posix.parts or not posix.parts:
        raise ValidationError("artifact path", "must be relative and stay inside the stash", path)
    return posix.as_posix()


def freeze_files(files: Mapping[str, bytes]) -> FileSet:
    """Copy a file mapping into a read-only one with normalized paths."""
    frozen: dict[str, bytes] = {}
    for path, content in files.items():
        if not isinstance(content, bytes | bytearray | memoryview):
            raise ValidationError(f"artifact '{path}'", "content must be bytes", type(content))
        frozen[normalize_path(path)] = bytes(content)
    return MappingProxyType(dict(sorted(frozen.items())))


@dataclass(frozen=True, slots=True)
class ArtifactEntry:
    """A named, immutable bundle of files written by one task of one run."""

    run_id: str
    stash: str
    files: FileSet = field(default_factory=dict)
    producer: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", freeze_files(self.files))

    @property
    def size(self) -> int:
        return sum(len(content) for content in self.files.values())

    def digest(self) -> str:
        """Content digest over sorted paths and bytes."""
        h = hashlib.sha256()
        for path, content in self.files.items():
            h.update(path.encode())
            h.update(b"\0")
            h.update(hashlib.sha256(content).digest())
        return h.hexdigest()
