"""Tests for the in-process observer manager."""

import asyncio
import threading

import pytest
import pytest_asyncio

from matrixci.drivers.observer_manager import LocalObserverManager
from matrixci.kernel.orchestration.events.events import (
    Event,
    StageStarted,
    TaskFailed,
    TaskStarted,
)
from matrixci.stdlib.observers import CollectingObserver

STAGE = StageStarted(run_id="main-line#1", name="Build", index=1, tasks=("build-cpu",))
TASK = TaskStarted(run_id="main-line#1", stage="Build", name="build-cpu", worker_id="cpu-1")


@pytest_asyncio.fixture
async def manager():
    async with LocalObserverManager(observer_timeout=0.5) as m:
        yield m


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_object_and_functions(self, manager: LocalObserverManager) -> None:
        collector = CollectingObserver()
        async_seen: list[Event] = []
        sync_threads: list[str] = []

        async def async_observer(event: Event) -> None:
            async_seen.append(event)

        def sync_observer(event: Event) -> None:
            sync_threads.append(threading.current_thread().name)

        manager.register(collector, observer_id="collector")
        manager.register(async_observer)
        manager.register(sync_observer)
        assert len(manager) == 3

        await manager.notify(STAGE)

        assert collector.events == [STAGE]
        assert async_seen == [STAGE]
        assert len(sync_threads) == 1
        assert sync_threads[0] != threading.main_thread().name

    def test_duplicate_id_rejected(self) -> None:
        manager = LocalObserverManager()
        manager.register(CollectingObserver(), observer_id="log")
        with pytest.raises(ValueError, match="already registered"):
            manager.register(CollectingObserver(), observer_id="log")

    def test_non_callable_rejected(self) -> None:
        with pytest.raises(TypeError):
            LocalObserverManager().register(42)  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_unregister(self, manager: LocalObserverManager) -> None:
        collector = CollectingObserver()
        observer_id = manager.register(collector)
        assert manager.unregister(observer_id) is True
        assert manager.unregister(observer_id) is False
        await manager.notify(STAGE)
        assert len(collector) == 0


class TestFiltering:
    @pytest.mark.asyncio
    async def test_single_type_and_tuple(self, manager: LocalObserverManager) -> None:
        stages = CollectingObserver()
        tasks = CollectingObserver()
        manager.register(stages, event_types=StageStarted)
        manager.register(tasks, event_types=(TaskStarted, TaskFailed))

        await manager.notify(STAGE)
        await manager.notify(TASK)

        assert stages.events == [STAGE]
        assert tasks.events == [TASK]


class TestFaultIsolation:
    @pytest.mark.asyncio
    async def test_failing_observer_does_not_raise(self, manager: LocalObserverManager) -> None:
        collector = CollectingObserver()

        async def broken(event: Event) -> None:
            raise RuntimeError("dashboard down")

        manager.register(broken)
        manager.register(collector)
        await manager.notify(STAGE)
        assert collector.events == [STAGE]

    @pytest.mark.asyncio
    async def test_slow_observer_times_out(self, manager: LocalObserverManager) -> None:
        collector = CollectingObserver()

        async def slow(event: Event) -> None:
            await asyncio.sleep(10)

        manager.register(slow, timeout=0.05)
        manager.register(collector)
        async with asyncio.timeout(2):
            await manager.notify(STAGE)
        assert collector.events == [STAGE]

    @pytest.mark.asyncio
    async def test_close_clears_observers(self) -> None:
        manager = LocalObserverManager()
        manager.register(CollectingObserver())
        await manager.close()
        assert len(manager) == 0
        # closing twice is harmless
        await manager.close()
