"""Artifact store persisted to a local directory.

Layout::

    <root>/<run>/<stash>/manifest.json
    <root>/<run>/<stash>/files/<relative path>

Run ids and stash names are made filesystem-safe. Files are written with
aiofiles so large stashes do not block the event loop, and the manifest is
written last: a stash directory without a manifest is an incomplete write.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path

import aiofiles

from matrixci.kernel.domain.artifacts import ArtifactEntry
from matrixci.kernel.exceptions import UnknownStashError
from matrixci.kernel.orchestration.components.artifact_store import BaseArtifactStore
from matrixci.kernel.utils.paths import safe_name

MANIFEST = "manifest.json"


class LocalArtifactStore(BaseArtifactStore):
    """Stores stashes as plain files under ``root``."""

    def __init__(
        self,
        root: str | Path,
        max_retained_runs: int = 1,
        retention_seconds: float | None = None,
    ) -> None:
        super().__init__(max_retained_runs=max_retained_runs, retention_seconds=retention_seconds)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _stash_dir(self, run_id: str, stash: str) -> Path:
        return self.root / safe_name(run_id) / safe_name(stash)

    async def _write(self, entry: ArtifactEntry) -> None:
        stash_dir = self._stash_dir(entry.run_id, entry.stash)
        files_dir = stash_dir / "files"
        if stash_dir.exists():
            # leftover of an interrupted write
            await asyncio.to_thread(shutil.rmtree, stash_dir)
        files_dir.mkdir(parents=True)

        for rel_path, content in entry.files.items():
            target = files_dir / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(content)

        manifest = {
            "run_id": entry.run_id,
            "stash": entry.stash,
            "producer": entry.producer,
            "files": sorted(entry.files),
            "digest": entry.digest(),
        }
        async with aiofiles.open(stash_dir / MANIFEST, "w") as f:
            await f.write(json.dumps(manifest, indent=2))

    async def _read(self, run_id: str, stash: str) -> ArtifactEntry:
        stash_dir = self._stash_dir(run_id, stash)
        manifest_path = stash_dir / MANIFEST
        if not manifest_path.exists():
            raise UnknownStashError(run_id, stash)

        async with aiofiles.open(manifest_path) as f:
            manifest = json.loads(await f.read())

        files: dict[str, bytes] = {}
        for rel_path in manifest["files"]:
            async with aiofiles.open(stash_dir / "files" / rel_path, "rb") as f:
                files[rel_path] = await f.read()

        return ArtifactEntry(
            run_id=run_id, stash=stash, files=files, producer=manifest.get("producer")
        )

    async def _delete_run(self, run_id: str) -> None:
        run_dir = self.root / safe_name(run_id)
        if run_dir.exists():
            await asyncio.to_thread(shutil.rmtree, run_dir, True)
