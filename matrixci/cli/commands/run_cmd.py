"""Run a pipeline on this machine."""

import asyncio
import re
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.table import Table

from matrixci.adapters.approval import AutoApprove
from matrixci.adapters.artifacts import LocalArtifactStore
from matrixci.adapters.executors import LocalShellExecutor, MockTaskExecutor
from matrixci.adapters.publishers import LocalDirectoryPublisher, RecordingPublisher
from matrixci.adapters.source import GitSourceFetcher, MockSourceFetcher
from matrixci.cli.utils import (
    ExitCode,
    console,
    declared_workers,
    err_console,
    get_config,
    load_pipeline_or_exit,
    local_worker,
)
from matrixci.drivers.observer_manager import LocalObserverManager
from matrixci.kernel.domain.pipeline import Pipeline
from matrixci.kernel.domain.run import RunResult, StepStatus
from matrixci.kernel.exceptions import NoEligibleWorkerError
from matrixci.kernel.logging import get_logger
from matrixci.kernel.orchestration.components.worker_pool import WorkerPool
from matrixci.kernel.pipeline_runner import PipelineRunner, Trigger
from matrixci.stdlib.observers import LoggingObserver

logger = get_logger(__name__)

_CHAR_CLASS = re.compile(r"\[[^\]]*\]")


def example_path(pattern: str) -> str:
    """A concrete relative path matched by glob ``pattern``.

    Examples
    --------
    >>> example_path("python-package/dist/*.whl")
    'python-package/dist/dry-run.whl'
    >>> example_path("**/*")
    'dry-run'
    """
    parts = []
    for part in pattern.split("/"):
        if part in ("", "**"):
            continue
        part = _CHAR_CLASS.sub("x", part).replace("*", "dry-run").replace("?", "x")
        parts.append(part)
    return "/".join(parts) or "dry-run"


def _dry_run_files(pipeline: Pipeline) -> dict[str, dict[str, bytes]]:
    """Placeholder files so every output stash of a dry run is non-empty."""
    files: dict[str, dict[str, bytes]] = {}
    for task in pipeline.tasks():
        command_steps = [s for s in task.steps if s.run is not None]
        if not task.outputs or not command_steps:
            continue
        # written after the task's last command step
        files[f"{task.name}/{command_steps[-1].name}"] = {
            example_path(output.includes[0]): f"{task.name} -> {output.name}\n".encode()
            for output in task.outputs
            if output.includes
        }
    return files


def _summary(result: RunResult) -> Table:
    table = Table(title=f"Run {result.run_id}", show_header=True, border_style="cyan")
    table.add_column("Stage", style="bold")
    table.add_column("Task", style="green")
    table.add_column("Worker", style="blue")
    table.add_column("Status")
    table.add_column("Detail", style="dim")
    colors = {"succeeded": "green", "failed": "red", "skipped": "yellow"}
    for stage in result.stages.values():
        if not stage.tasks:
            color = colors.get(str(stage.status), "white")
            table.add_row(stage.name, "-", "-", f"[{color}]{stage.status}[/{color}]", "")
        for i, task in enumerate(stage.tasks.values()):
            color = colors.get(str(task.status), "white")
            skipped = [s.name for s in task.steps if s.status == StepStatus.SKIPPED]
            detail = task.error or (f"skipped: {', '.join(skipped)}" if skipped else "")
            table.add_row(
                stage.name if i == 0 else "",
                task.name,
                task.worker_id or "-",
                f"[{color}]{task.status}[/{color}]",
                detail[:80],
            )
    return table


def run(
    ctx: typer.Context,
    pipeline_path: Annotated[
        Path,
        typer.Argument(help="Path to the pipeline YAML file", exists=True, dir_okay=False),
    ],
    branch: Annotated[str, typer.Option("--branch", "-b", help="Branch being built")],
    commit: Annotated[
        str | None, typer.Option("--commit", "-c", help="Commit to build (default: branch tip)")
    ] = None,
    author: Annotated[str | None, typer.Option("--author", help="Change author")] = None,
    repository: Annotated[
        str, typer.Option("--repo", help="Repository URL or path to fetch sources from")
    ] = ".",
    workspace: Annotated[
        Path | None, typer.Option("--workspace", help="Parent directory of task workspaces")
    ] = None,
    artifacts: Annotated[
        Path | None, typer.Option("--artifacts", help="Keep stashes on disk under this directory")
    ] = None,
    publish_dir: Annotated[
        Path, typer.Option("--publish-dir", help="Directory publish steps copy artifacts to")
    ] = Path("published"),
    keep_workspaces: Annotated[
        bool, typer.Option("--keep-workspaces", help="Leave task workspaces on disk")
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Walk the stage graph without running any command"),
    ] = False,
) -> None:
    """Run a pipeline locally for one branch and commit.

    Exit codes: 0 succeeded, 1 failed, 2 invalid pipeline or configuration,
    3 superseded by a newer run.

    Examples
    --------
    matrixci run pipelines/xgboost.yaml --branch main-line --commit 1a2b3c4
    matrixci run pipelines/xgboost.yaml --branch feature-x --dry-run
    """
    config = get_config(ctx)
    engine = config.engine
    pipeline = load_pipeline_or_exit(pipeline_path, config)

    workers = declared_workers(pipeline, config)
    if not workers:
        worker = local_worker(pipeline)
        logger.warning(
            "No workers declared; running every task on '{worker}' with labels {labels}",
            worker=worker.worker_id,
            labels=str(worker.labels),
        )
        workers = [worker]

    options: dict[str, Any] = {"pool": WorkerPool(workers), "keep_workspaces": keep_workspaces}
    if artifacts is not None:
        options["store"] = LocalArtifactStore(
            artifacts,
            max_retained_runs=engine.max_retained_runs,
            retention_seconds=engine.retention_seconds,
        )
    if workspace is not None:
        options["workspace_root"] = workspace

    if dry_run:
        executor = MockTaskExecutor(files=_dry_run_files(pipeline))
        source = MockSourceFetcher(commit=commit or "0" * 40)
        publisher = RecordingPublisher()
    else:
        executor = LocalShellExecutor()
        source = GitSourceFetcher(repository)
        publisher = LocalDirectoryPublisher(publish_dir)

    async def execute() -> RunResult:
        async with LocalObserverManager() as observers:
            observers.register(LoggingObserver(), observer_id="log")
            runner = PipelineRunner.from_config(
                pipeline,
                executor,
                engine,
                source=source,
                approval=AutoApprove(),
                publisher=publisher,
                observer_manager=observers,
                **options,
            )
            return await runner.run(Trigger(branch=branch, commit=commit, author=author))

    try:
        result = asyncio.run(execute())
    except NoEligibleWorkerError as e:
        err_console.print(f"[red]✗ Unschedulable task:[/red] {e}")
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e

    console.print(_summary(result))
    if dry_run and isinstance(publisher, RecordingPublisher):
        for upload in publisher.uploads:
            console.print(f"[dim]would publish {upload.stash} to {upload.destination}[/dim]")

    if result.superseded:
        console.print(f"[yellow]↷ Run {result.run_id} superseded[/yellow]")
        raise typer.Exit(ExitCode.SUPERSEDED)
    if not result.succeeded:
        where = "/".join(p for p in (result.failed_stage, result.failed_task, result.failed_step) if p)
        console.print(
            f"[red]✗ Run {result.run_id} {result.status}[/red]"
            + (f" at {where}" if where else "")
            + (f": {result.reason}" if result.reason else "")
        )
        raise typer.Exit(ExitCode.FAILED)
    console.print(f"[green]✓ Run {result.run_id} succeeded[/green] (commit {result.commit})")
