"""CLI helper utilities for matrixci commands."""

from __future__ import annotations

from enum import IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console
from rich.table import Table

from matrixci.kernel.config.models import MatrixCIConfig
from matrixci.kernel.domain.branch import PublishPolicy
from matrixci.kernel.domain.labels import LabelSet, Worker
from matrixci.kernel.exceptions import ConfigurationError, DependencyError
from matrixci.kernel.pipeline_builder.yaml_builder import YamlPipelineBuilder
from matrixci.kernel.validation.retry import RetryConfig

if TYPE_CHECKING:
    from matrixci.kernel.domain.pipeline import Pipeline

console = Console()
err_console = Console(stderr=True)

LOCAL_WORKER_ID = "local"


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILED = 1
    CONFIG_ERROR = 2
    SUPERSEDED = 3


def get_config(ctx: typer.Context | None) -> MatrixCIConfig:
    """Configuration loaded by the app callback, or defaults."""
    obj: Any = getattr(ctx, "obj", None) if ctx is not None else None
    if isinstance(obj, dict) and isinstance(obj.get("config"), MatrixCIConfig):
        return obj["config"]
    return MatrixCIConfig()


def load_pipeline_or_exit(path: Path, config: MatrixCIConfig) -> Pipeline:
    """Build the pipeline at ``path``; print the problem and exit 2 if it is invalid."""
    engine = config.engine
    builder = YamlPipelineBuilder(
        publish_policy=PublishPolicy(engine.mainline_branch, engine.release_pattern),
        run_timeout=engine.run_timeout,
        checkout=RetryConfig(
            max_attempts=engine.checkout_attempts, attempt_timeout=engine.checkout_timeout
        ),
    )
    try:
        return builder.build_from_yaml_file(path)
    except (ConfigurationError, DependencyError) as e:
        err_console.print(f"[red]✗ Invalid pipeline:[/red] {e}")
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e


def declared_workers(pipeline: Pipeline, config: MatrixCIConfig) -> list[Worker]:
    """Workers from the pipeline file, else from the engine configuration."""
    if pipeline.workers:
        return list(pipeline.workers)
    return [w for cfg in config.engine.workers for w in cfg.to_workers()]


def local_worker(pipeline: Pipeline) -> Worker:
    """A single worker carrying every label the pipeline asks for."""
    labels = LabelSet()
    for task in pipeline.tasks():
        labels = labels.union(task.labels)
    return Worker(LOCAL_WORKER_ID, labels)


def task_table(pipeline: Pipeline) -> Table:
    table = Table(title=f"Pipeline '{pipeline.name}'", show_header=True, border_style="cyan")
    table.add_column("Stage", style="bold")
    table.add_column("Task", style="green")
    table.add_column("Labels", style="blue")
    table.add_column("Inputs", style="white")
    table.add_column("Outputs", style="white")
    for stage in pipeline.all_stages():
        for i, task in enumerate(stage.tasks):
            table.add_row(
                stage.name if i == 0 else "",
                task.name,
                ", ".join(task.labels),
                ", ".join(task.inputs) or "-",
                ", ".join(task.output_names) or "-",
            )
    return table
