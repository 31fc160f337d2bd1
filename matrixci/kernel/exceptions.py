"""Core exception hierarchy for matrixci.

All engine errors inherit from MatrixCIError. The hierarchy mirrors the
error taxonomy of a CI run:

- configuration / dependency errors are fatal and detected before any
  worker is acquired
- artifact errors signal a dependency-ordering bug between tasks
- retry exhaustion surfaces a transient infrastructure failure
- supersession is not a failure and is reported as its own status
"""

from __future__ import annotations

# ============================================================================
# Base Exception
# ============================================================================


class MatrixCIError(Exception):
    """Base exception for all matrixci errors.

    Catch this to handle every engine-level error.
    """

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(MatrixCIError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("pipeline", "YAML file not found")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class PipelineDefinitionError(ConfigurationError):
    """Raised when a pipeline YAML file cannot be parsed or fails validation."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"pipeline {source}", reason)
        self.source = source


class ValidationError(MatrixCIError):
    """Raised when data validation fails.

    Examples
    --------
    Example usage::

        raise ValidationError("label", "must be lowercase", value="GPU")
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


# ============================================================================
# Dependency Errors
# ============================================================================


class DependencyError(MatrixCIError):
    """Raised when a task depends on something the pipeline never provides.

    Examples
    --------
    Example usage::

        raise DependencyError("test-python-gpu", "input stash 'srcs' has no producer")
    """

    def __init__(self, dependency: str, reason: str) -> None:
        super().__init__(f"Dependency error for '{dependency}': {reason}")
        self.dependency = dependency
        self.reason = reason


class DanglingDependencyError(DependencyError):
    """Raised when a test variant references an artifact no build variant produces.

    Examples
    --------
    Example usage::

        raise DanglingDependencyError("test-python-gpu-cuda9.0", "wheel@accel:9.0", ["wheel@cpu"])
    """

    def __init__(self, task: str, stash: str, available: list[str] | None = None) -> None:
        reason = f"dangling test dependency on stash '{stash}'"
        if available:
            reason += f". Built stashes: {', '.join(sorted(available))}"
        super().__init__(task, reason)
        self.task = task
        self.stash = stash
        self.available = available or []


# ============================================================================
# Artifact Errors
# ============================================================================


class ArtifactError(MatrixCIError):
    """Base class for artifact store errors."""

    def __init__(self, run_id: str, stash: str, message: str) -> None:
        super().__init__(f"{message}: '{stash}' (run {run_id})")
        self.run_id = run_id
        self.stash = stash


class UnknownStashError(ArtifactError):
    """Raised when a stash is read before (or without) being written in the run."""

    def __init__(self, run_id: str, stash: str) -> None:
        super().__init__(run_id, stash, "Unknown stash")


class DuplicateStashError(ArtifactError):
    """Raised on a second write of the same (run, stash) key."""

    def __init__(self, run_id: str, stash: str) -> None:
        super().__init__(run_id, stash, "Duplicate stash")


# ============================================================================
# Scheduling Errors
# ============================================================================


class NoEligibleWorkerError(MatrixCIError):
    """Raised when no registered worker can ever satisfy a label predicate.

    This is a static misconfiguration, so the task fails fast instead of
    waiting for a worker that will never appear.
    """

    def __init__(self, labels: object, available: list[str] | None = None) -> None:
        msg = f"No eligible worker for labels {labels}"
        if available:
            msg += f". Registered workers: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.labels = labels
        self.available = available


class RetryExhaustedError(MatrixCIError):
    """Raised when a retried operation failed on every allowed attempt."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"Operation '{operation}' failed after {attempts} attempt(s): {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


# ============================================================================
# Orchestration Errors
# ============================================================================


class OrchestratorError(MatrixCIError):
    """Raised when run orchestration encounters an error.

    Examples
    --------
    Example usage::

        raise OrchestratorError("Run 'main-line#7' already started")
    """

    pass


class SupersededError(MatrixCIError):
    """Raised when a run is told to stop because a newer run of its branch advanced."""

    def __init__(self, run_id: str, superseded_by: str | None = None) -> None:
        msg = f"Run '{run_id}' superseded"
        if superseded_by:
            msg += f" by '{superseded_by}'"
        super().__init__(msg)
        self.run_id = run_id
        self.superseded_by = superseded_by


__all__ = [
    "MatrixCIError",
    "ConfigurationError",
    "PipelineDefinitionError",
    "ValidationError",
    "DependencyError",
    "DanglingDependencyError",
    "ArtifactError",
    "UnknownStashError",
    "DuplicateStashError",
    "NoEligibleWorkerError",
    "RetryExhaustedError",
    "OrchestratorError",
    "SupersededError",
]
