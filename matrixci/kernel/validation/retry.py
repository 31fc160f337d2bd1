"""Bounded retry with a per-attempt deadline.

The primary interface is :func:`with_retry`, which runs an async callable up
to ``max_attempts`` times. Each attempt is bounded by ``attempt_timeout``; a
failed or timed-out attempt runs the ``cleanup`` action (e.g. wipe a partial
checkout) before the next one. After the last failed attempt the combinator
raises :class:`RetryExhaustedError` and never retries further.

Examples
--------
Source checkout as the Initialize stage does it::

    config = RetryConfig(max_attempts=5, attempt_timeout=180.0)
    tree = await with_retry(
        lambda: source.fetch(branch, commit, workdir),
        config,
        cleanup=lambda: shutil.rmtree(workdir, ignore_errors=True),
        operation="checkout",
    )
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from matrixci.kernel.exceptions import RetryExhaustedError, ValidationError
from matrixci.kernel.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Configuration for bounded retries.

    Parameters
    ----------
    max_attempts : int
        Total number of attempts. 1 means a single attempt, no retries.
    attempt_timeout : float | None
        Deadline in seconds for each attempt; None disables it.
    delay : float
        Delay in seconds before the first retry (0 retries immediately).
    backoff : float
        Multiplier applied to the delay after each retry.
    max_delay : float
        Maximum delay cap in seconds.
    """

    max_attempts: int = 1
    attempt_timeout: float | None = None
    delay: float = 0.0
    backoff: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError("max_attempts", "must be at least 1", self.max_attempts)
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValidationError("attempt_timeout", "must be positive", self.attempt_timeout)

    def compute_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-indexed).

        Examples
        --------
        >>> cfg = RetryConfig(delay=1.0, backoff=2.0, max_delay=10.0)
        >>> cfg.compute_delay(1), cfg.compute_delay(3), cfg.compute_delay(10)
        (1.0, 4.0, 10.0)
        """
        if self.delay <= 0:
            return 0.0
        return min(self.delay * (self.backoff ** (attempt - 1)), self.max_delay)


async def _run_cleanup(cleanup: Callable[[], Any], operation: str, attempt: int) -> None:
    result = cleanup()
    if inspect.isawaitable(result):
        await result
    logger.debug(
        "Cleaned up after failed attempt {attempt} of '{operation}'",
        attempt=attempt,
        operation=operation,
    )


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    *,
    cleanup: Callable[[], Any] | None = None,
    operation: str = "operation",
    on_retry: Callable[[int, int, BaseException], Any] | None = None,
) -> T:
    """Execute an async callable with bounded retries and per-attempt timeout.

    Parameters
    ----------
    fn : Callable[[], Awaitable[T]]
        Zero-argument async callable. Bind arguments with a lambda or
        ``functools.partial``.
    config : RetryConfig
        Attempt count, per-attempt deadline and backoff.
    cleanup : callable, optional
        Sync or async action run after every failed attempt, including the
        last one, so no partial state is left behind.
    operation : str
        Name used in logs and in the terminal error.
    on_retry : callable, optional
        Called with ``(attempt, max_attempts, error)`` before each retry.

    Returns
    -------
    T
        The value returned by the first successful attempt.

    Raises
    ------
    RetryExhaustedError
        When all ``config.max_attempts`` attempts failed. ``attempts`` holds
        the number performed and ``last_error`` the final failure.
    """
    last_error: BaseException | None = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            async with asyncio.timeout(config.attempt_timeout):
                return await fn()
        except TimeoutError as exc:
            last_error = exc
            logger.warning(
                "'{operation}' attempt {attempt}/{max_attempts} timed out after {timeout}s",
                operation=operation,
                attempt=attempt,
                max_attempts=config.max_attempts,
                timeout=config.attempt_timeout,
            )
        except Exception as exc:
            last_error = exc
            logger.warning(
                "'{operation}' attempt {attempt}/{max_attempts} failed: {error}",
                operation=operation,
                attempt=attempt,
                max_attempts=config.max_attempts,
                error=exc,
            )

        if cleanup is not None:
            await _run_cleanup(cleanup, operation, attempt)

        if attempt < config.max_attempts:
            if on_retry is not None:
                on_retry(attempt, config.max_attempts, last_error)
            delay = config.compute_delay(attempt)
            if delay:
                await asyncio.sleep(delay)

    assert last_error is not None
    raise RetryExhaustedError(operation, config.max_attempts, last_error) from last_error
