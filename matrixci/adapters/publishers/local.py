"""Publish artifacts into a local directory tree."""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiofiles

from matrixci.kernel.domain.artifacts import ArtifactEntry, normalize_path
from matrixci.kernel.logging import get_logger
from matrixci.kernel.ports.publisher import Publisher

logger = get_logger(__name__)


class LocalDirectoryPublisher(Publisher):
    """Copies every file of an artifact to ``<root>/<destination>/<path>``.

    Destinations are relative. A URL such as ``s3://bucket/nightly`` is
    mapped to ``<root>/s3/bucket/nightly``, so pipelines written for remote
    storage can publish locally unchanged.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def target_dir(self, destination: str) -> Path:
        if "://" in destination:
            scheme, _, rest = destination.partition("://")
            destination = f"{scheme}/{rest}"
        destination = destination.strip("/")
        return self.root / normalize_path(destination) if destination else self.root

    async def upload(self, artifact: ArtifactEntry, destination: str) -> None:
        target_dir = self.target_dir(destination)
        for rel_path, content in artifact.files.items():
            target = target_dir / rel_path
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(content)
        logger.debug(
            "Copied {count} file(s) of '{stash}' to {target}",
            count=len(artifact.files),
            stash=artifact.stash,
            target=target_dir,
        )
