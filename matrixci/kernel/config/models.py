"""Configuration data models for matrixci."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from matrixci.kernel.domain.branch import DEFAULT_MAINLINE, DEFAULT_RELEASE_PATTERN
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.exceptions import ValidationError


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for matrixci.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, rich)
    output_file : str | None, default=None
        Optional file path that additionally receives JSON records
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    backtrace : bool, default=True
        Extended tracebacks for logged exceptions
    diagnose : bool, default=False
        Show variable values in tracebacks

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.matrixci.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides:

    ```bash
    export MATRIXCI_LOG_LEVEL=DEBUG
    export MATRIXCI_LOG_FORMAT=json
    export MATRIXCI_LOG_FILE=/var/log/matrixci/runs.log
    ```
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    backtrace: bool = True
    diagnose: bool = False


@dataclass(frozen=True, slots=True)
class WorkerConfig:
    """A worker (or ``count`` identical replicas) available to local runs."""

    id: str
    labels: tuple[str, ...]
    count: int = 1

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("worker.id", "cannot be empty")
        if self.count < 1:
            raise ValidationError(f"worker '{self.id}'.count", "must be at least 1", self.count)

    def to_workers(self) -> tuple[Worker, ...]:
        """Replicas are named ``<id>-1`` .. ``<id>-<count>``."""
        labels = LabelSet.from_iterable(self.labels)
        if self.count == 1:
            return (Worker(self.id, labels),)
        return tuple(Worker(f"{self.id}-{i}", labels) for i in range(1, self.count + 1))


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Engine defaults; a pipeline file may override the run-level ones.

    Attributes
    ----------
    run_timeout : float | None
        Whole-run deadline in seconds
    checkout_attempts : int
        Attempts for the Initialize checkout
    checkout_timeout : float | None
        Per-attempt checkout deadline in seconds
    max_retained_runs : int
        Finished runs whose artifacts are kept
    retention_seconds : float | None
        Optional age limit for finished runs' artifacts
    artifact_root : str | None
        Directory for the local artifact store; in-memory when None
    workspace_root : str | None
        Parent directory of task workspaces; system temp dir when None
    mainline_branch : str
        Branch that publishes
    release_pattern : str
        Glob of release branches that publish
    workers : tuple[WorkerConfig, ...]
        Workers used when the pipeline file declares none
    """

    run_timeout: float | None = 4 * 60 * 60
    checkout_attempts: int = 5
    checkout_timeout: float | None = 120.0
    max_retained_runs: int = 1
    retention_seconds: float | None = None
    artifact_root: str | None = None
    workspace_root: str | None = None
    mainline_branch: str = DEFAULT_MAINLINE
    release_pattern: str = DEFAULT_RELEASE_PATTERN
    workers: tuple[WorkerConfig, ...] = ()

    def __post_init__(self) -> None:
        if self.run_timeout is not None and self.run_timeout <= 0:
            raise ValidationError("run_timeout", "must be positive", self.run_timeout)
        if self.checkout_attempts < 1:
            raise ValidationError("checkout_attempts", "must be at least 1", self.checkout_attempts)
        if self.max_retained_runs < 0:
            raise ValidationError(
                "max_retained_runs", "must not be negative", self.max_retained_runs
            )


@dataclass(frozen=True, slots=True)
class MatrixCIConfig:
    """Complete matrixci configuration."""

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
