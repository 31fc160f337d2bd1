"""Pipeline validation command for the matrixci CLI."""

from pathlib import Path
from typing import Annotated

import typer

from matrixci.cli.utils import (
    ExitCode,
    console,
    declared_workers,
    err_console,
    get_config,
    load_pipeline_or_exit,
    task_table,
)
from matrixci.kernel.exceptions import NoEligibleWorkerError
from matrixci.kernel.orchestration.components.worker_pool import WorkerPool


def validate(
    ctx: typer.Context,
    pipeline_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the pipeline YAML file",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
) -> None:
    """Validate a pipeline file and print its expanded tasks.

    Checks, before any run:
    - YAML syntax and manifest schema
    - recipes and placeholders of every matrix variant
    - duplicate task or stash names, dangling test dependencies
    - label predicates, when workers are declared

    Examples
    --------
    matrixci validate pipelines/xgboost.yaml
    """
    config = get_config(ctx)
    pipeline = load_pipeline_or_exit(pipeline_path, config)

    if workers := declared_workers(pipeline, config):
        pool = WorkerPool(workers)
        try:
            for task in pipeline.tasks():
                pool.check_satisfiable(task.labels)
        except NoEligibleWorkerError as e:
            err_console.print(f"[red]✗ Unschedulable task:[/red] {e}")
            raise typer.Exit(ExitCode.CONFIG_ERROR) from e
    else:
        console.print("[yellow]⚠[/yellow] No workers declared; label predicates not checked")

    console.print(task_table(pipeline))
    console.print(
        f"[green]✓ Pipeline valid:[/green] {pipeline_path} "
        f"({len(pipeline.all_stages())} stages, {len(pipeline.tasks())} tasks)"
    )
