"""Retry and timeout policies."""

from matrixci.kernel.validation.retry import RetryConfig, with_retry

__all__ = ["RetryConfig", "with_retry"]
