"""Wall-clock timing for stages, tasks and steps."""

import time
from collections.abc import Generator
from contextlib import contextmanager


class Timer:
    """Tracks elapsed milliseconds since construction.

    Examples
    --------
    >>> with timed() as t:
    ...     pass
    >>> t.duration_ms >= 0
    True
    """

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000

    @property
    def duration_str(self) -> str:
        """Elapsed seconds with 2 decimal places, for log lines."""
        return f"{self.duration_ms / 1000:.2f}s"


@contextmanager
def timed() -> Generator[Timer, None, None]:
    yield Timer()
