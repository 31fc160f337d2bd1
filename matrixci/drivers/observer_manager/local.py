"""Local Observer Manager - in-process implementation of the observer port.

Observers are fault-isolated: an observer that raises or exceeds its timeout
is logged and skipped, and never affects the run that emitted the event.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, cast

from matrixci.kernel.logging import get_logger

if TYPE_CHECKING:
    from matrixci.kernel.orchestration.events.events import Event
    from matrixci.kernel.ports.observer_manager import (
        AsyncObserverFunc,
        Observer,
        ObserverFunc,
    )

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENT_OBSERVERS = 10
DEFAULT_OBSERVER_TIMEOUT = 5.0
DEFAULT_MAX_SYNC_WORKERS = 4


class FunctionObserver:
    """Wrapper to make functions implement the Observer protocol."""

    def __init__(self, func: ObserverFunc | AsyncObserverFunc, executor: ThreadPoolExecutor):
        self._func = func
        self._executor = executor
        self.__name__ = getattr(func, "__name__", "anonymous_observer")

    async def handle(self, event: Event) -> None:
        if inspect.iscoroutinefunction(self._func):
            await self._func(event)
        else:
            # sync observers run in the pool so they cannot block the loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(self._executor, self._func, event)


class LocalObserverManager:
    """In-process observer manager.

    This implementation provides:

    - Event type filtering per observer
    - Concurrent observer execution with a global limit
    - Per-observer timeout
    - Fault isolation: observer failures are logged, never raised

    Examples
    --------
    Example usage::

        manager = LocalObserverManager()
        manager.register(LoggingObserver(), event_types=(StageStarted, StageCompleted))
        await manager.notify(StageStarted(run_id="main-line#7", name="Build", index=1))
    """

    def __init__(
        self,
        max_concurrent_observers: int = DEFAULT_MAX_CONCURRENT_OBSERVERS,
        observer_timeout: float = DEFAULT_OBSERVER_TIMEOUT,
        max_sync_workers: int = DEFAULT_MAX_SYNC_WORKERS,
    ) -> None:
        self._timeout = observer_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_observers)
        self._executor = ThreadPoolExecutor(max_workers=max_sync_workers)
        self._executor_shutdown = False

        self._handlers: dict[str, Observer] = {}
        self._event_filters: dict[str, tuple[type[Event], ...] | None] = {}
        self._observer_timeouts: dict[str, float | None] = {}

    def register(
        self,
        handler: Observer | ObserverFunc | AsyncObserverFunc,
        *,
        observer_id: str | None = None,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
        timeout: float | None = None,
    ) -> str:
        """Register an observer with optional event type filtering.

        Returns
        -------
        str
            The observer id (generated when not given)

        Raises
        ------
        ValueError
            If ``observer_id`` is already registered
        TypeError
            If ``handler`` is neither callable nor an Observer
        """
        resolved_id = observer_id or str(uuid.uuid4())
        if resolved_id in self._handlers:
            raise ValueError(f"Observer '{resolved_id}' already registered")

        if hasattr(handler, "handle"):
            observer = cast("Observer", handler)
        elif callable(handler):
            observer = FunctionObserver(handler, self._executor)
        else:
            raise TypeError(
                f"Observer must be callable or implement Observer protocol, got {type(handler)}"
            )

        if event_types is None:
            filters = None
        elif isinstance(event_types, type):
            filters = (event_types,)
        else:
            filters = tuple(event_types)

        self._handlers[resolved_id] = observer
        self._event_filters[resolved_id] = filters
        self._observer_timeouts[resolved_id] = timeout
        return resolved_id

    def unregister(self, handler_id: str) -> bool:
        found = self._handlers.pop(handler_id, None) is not None
        self._event_filters.pop(handler_id, None)
        self._observer_timeouts.pop(handler_id, None)
        return found

    async def notify(self, event: Event) -> None:
        """Deliver ``event`` to every interested observer concurrently."""
        interested = [
            (observer_id, observer)
            for observer_id, observer in self._handlers.items()
            if self._wants(observer_id, event)
        ]
        if not interested:
            return
        await asyncio.gather(
            *(self._dispatch(observer_id, observer, event) for observer_id, observer in interested)
        )

    def _wants(self, observer_id: str, event: Event) -> bool:
        filters = self._event_filters.get(observer_id)
        return filters is None or isinstance(event, filters)

    async def _dispatch(self, observer_id: str, observer: Observer, event: Event) -> None:
        timeout = self._observer_timeouts.get(observer_id) or self._timeout
        where = f"{type(event).__name__} of run '{getattr(event, 'run_id', '-')}'"
        async with self._semaphore:
            try:
                async with asyncio.timeout(timeout):
                    await observer.handle(event)
            except TimeoutError:
                logger.warning(
                    "Observer '{observer}' exceeded {timeout}s on {where}; event dropped",
                    observer=observer_id,
                    timeout=timeout,
                    where=where,
                )
            except Exception as e:
                # observers never affect the run
                logger.opt(exception=e).warning(
                    "Observer '{observer}' failed on {where}: {error}",
                    observer=observer_id,
                    where=where,
                    error=e,
                )

    def clear(self) -> None:
        """Remove all registered observers."""
        self._handlers.clear()
        self._event_filters.clear()
        self._observer_timeouts.clear()

    async def close(self) -> None:
        self.clear()
        if not self._executor_shutdown:
            self._executor.shutdown(wait=True)
            self._executor_shutdown = True

    def __len__(self) -> int:
        return len(self._handlers)

    async def __aenter__(self) -> LocalObserverManager:
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()
