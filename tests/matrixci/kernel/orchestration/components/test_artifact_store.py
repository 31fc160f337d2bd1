"""Tests for the write-once, run-scoped artifact store (both adapters)."""

import asyncio
import json

import pytest

from matrixci.adapters.artifacts import InMemoryArtifactStore, LocalArtifactStore
from matrixci.kernel.exceptions import DuplicateStashError, UnknownStashError, ValidationError
from matrixci.kernel.orchestration.components.artifact_store import BaseArtifactStore

WHEEL = {"dist/xgboost-2.0-py3-none-any.whl": b"PK\x03\x04wheel", "dist/README": b"readme"}


@pytest.fixture(params=["memory", "local"])
def make_store(request, tmp_path):
    def factory(**kwargs) -> BaseArtifactStore:
        if request.param == "memory":
            return InMemoryArtifactStore(**kwargs)
        return LocalArtifactStore(tmp_path / "artifacts", **kwargs)

    return factory


class TestArtifactStoreContract:
    @pytest.mark.asyncio
    async def test_round_trip(self, make_store) -> None:
        store = make_store()
        await store.put("main-line#1", "wheel@cpu", WHEEL, producer="build-cpu")
        assert dict(await store.get("main-line#1", "wheel@cpu")) == WHEEL
        entry = await store.entry("main-line#1", "wheel@cpu")
        assert entry.producer == "build-cpu"
        assert await store.stashes("main-line#1") == ["wheel@cpu"]

    @pytest.mark.asyncio
    async def test_runs_are_isolated(self, make_store) -> None:
        store = make_store(max_retained_runs=5)
        await store.put("main-line#1", "srcs", {"a.txt": b"one"})
        await store.put("main-line#2", "srcs", {"a.txt": b"two"})
        assert (await store.get("main-line#1", "srcs"))["a.txt"] == b"one"
        assert (await store.get("main-line#2", "srcs"))["a.txt"] == b"two"
        with pytest.raises(UnknownStashError):
            await store.get("feature-x#1", "srcs")

    @pytest.mark.asyncio
    async def test_unknown_stash(self, make_store) -> None:
        store = make_store()
        with pytest.raises(UnknownStashError, match="wheel@gpu"):
            await store.get("main-line#1", "wheel@gpu")
        assert not await store.has("main-line#1", "wheel@gpu")

    @pytest.mark.asyncio
    async def test_write_once(self, make_store) -> None:
        store = make_store()
        await store.put("main-line#1", "wheel@cpu", WHEEL)
        with pytest.raises(DuplicateStashError):
            await store.put("main-line#1", "wheel@cpu", {"other": b"x"})
        assert dict(await store.get("main-line#1", "wheel@cpu")) == WHEEL

    @pytest.mark.asyncio
    async def test_concurrent_writers_only_one_wins(self, make_store) -> None:
        store = make_store()
        results = await asyncio.gather(
            store.put("main-line#1", "wheel@cpu", {"a": b"1"}),
            store.put("main-line#1", "wheel@cpu", {"a": b"2"}),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        assert len(errors) == 1
        assert isinstance(errors[0], DuplicateStashError)

    @pytest.mark.asyncio
    async def test_put_after_terminal_rejected(self, make_store) -> None:
        store = make_store()
        await store.mark_terminal("main-line#1")
        with pytest.raises(ValidationError, match="already finished"):
            await store.put("main-line#1", "late", {"a": b"1"})

    @pytest.mark.asyncio
    async def test_retention_keeps_newest_terminal_runs(self, make_store) -> None:
        store = make_store(max_retained_runs=1)
        await store.put("main-line#1", "srcs", {"a": b"1"})
        await store.put("main-line#2", "srcs", {"a": b"2"})

        assert await store.mark_terminal("main-line#1") == []
        assert await store.mark_terminal("main-line#2") == ["main-line#1"]

        with pytest.raises(UnknownStashError):
            await store.get("main-line#1", "srcs")
        assert (await store.get("main-line#2", "srcs"))["a"] == b"2"

    @pytest.mark.asyncio
    async def test_in_flight_runs_are_never_evicted(self, make_store) -> None:
        store = make_store(max_retained_runs=0)
        await store.put("main-line#1", "srcs", {"a": b"1"})
        await store.put("main-line#2", "srcs", {"a": b"2"})
        assert await store.mark_terminal("main-line#1") == ["main-line#1"]
        assert await store.runs() == ["main-line#2"]

    @pytest.mark.asyncio
    async def test_age_based_retention(self, make_store) -> None:
        store = make_store(max_retained_runs=10, retention_seconds=0.01)
        await store.put("main-line#1", "srcs", {"a": b"1"})
        await store.mark_terminal("main-line#1")
        await asyncio.sleep(0.05)
        assert await store.mark_terminal("main-line#2") == ["main-line#1"]

    def test_negative_retention_rejected(self, make_store) -> None:
        with pytest.raises(ValidationError):
            make_store(max_retained_runs=-1)


class TestLocalArtifactStore:
    @pytest.mark.asyncio
    async def test_layout_and_manifest(self, tmp_path) -> None:
        store = LocalArtifactStore(tmp_path)
        entry = await store.put("main-line#7", "wheel@accel:11.0", WHEEL, producer="build-gpu")

        stash_dir = tmp_path / "main-line%237" / "wheel%40accel%3A11.0"
        manifest = json.loads((stash_dir / "manifest.json").read_text())
        assert manifest["files"] == sorted(WHEEL)
        assert manifest["digest"] == entry.digest()
        assert (stash_dir / "files" / "dist" / "README").read_bytes() == b"readme"

    @pytest.mark.asyncio
    async def test_eviction_removes_run_directory(self, tmp_path) -> None:
        store = LocalArtifactStore(tmp_path, max_retained_runs=0)
        await store.put("feature-x#1", "srcs", {"a": b"1"})
        await store.mark_terminal("feature-x#1")
        assert not (tmp_path / "feature-x%231").exists()
