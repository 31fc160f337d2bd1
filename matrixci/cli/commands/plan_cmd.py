"""Show what a run of a pipeline would do."""

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.tree import Tree

from matrixci.cli.utils import console, get_config, load_pipeline_or_exit
from matrixci.kernel.domain.pipeline import Pipeline, StepKind


def plan_dict(pipeline: Pipeline, branch: str | None = None) -> dict[str, Any]:
    """Stages, tasks and stash edges as plain data."""
    producers = {
        stash: task.name for task in pipeline.tasks() for stash in task.output_names
    }
    publishes = branch is None or pipeline.publish_policy.allows(branch)
    return {
        "name": pipeline.name,
        "publish_policy": {
            "mainline": pipeline.publish_policy.mainline,
            "release_pattern": pipeline.publish_policy.release_pattern,
        },
        "stages": [
            {
                "name": stage.name,
                "checkpoint": stage.checkpoint,
                "exclusive": stage.exclusive,
                "tasks": [
                    {
                        "name": task.name,
                        "labels": list(task.labels),
                        "inputs": {stash: producers.get(stash) for stash in task.inputs},
                        "outputs": list(task.output_names),
                        "steps": [
                            {
                                "name": step.name,
                                "kind": str(step.kind),
                                "skipped": step.kind == StepKind.PUBLISH and not publishes,
                            }
                            for step in task.steps
                        ],
                    }
                    for task in stage.tasks
                ],
            }
            for stage in pipeline.all_stages()
        ],
    }


def plan(
    ctx: typer.Context,
    pipeline_path: Annotated[
        Path,
        typer.Argument(help="Path to the pipeline YAML file", exists=True, dir_okay=False),
    ],
    branch: Annotated[
        str | None,
        typer.Option("--branch", "-b", help="Mark publish steps this branch would skip"),
    ] = None,
    json_out: Annotated[bool, typer.Option("--json", help="Output machine-readable JSON")] = False,
) -> None:
    """Print stages, tasks, labels and stash edges.

    Examples
    --------
    matrixci plan pipelines/xgboost.yaml
    matrixci plan pipelines/xgboost.yaml --branch feature-x --json
    """
    pipeline = load_pipeline_or_exit(pipeline_path, get_config(ctx))
    data = plan_dict(pipeline, branch)

    if json_out:
        typer.echo(json.dumps(data, indent=2))
        return

    root = Tree(f"[bold]{data['name']}[/bold]")
    for index, stage in enumerate(data["stages"], start=1):
        marker = " [dim](checkpoint)[/dim]" if stage["checkpoint"] else ""
        if stage["exclusive"]:
            marker += " [dim](exclusive)[/dim]"
        stage_node = root.add(f"[cyan]{index}. {stage['name']}[/cyan]{marker}")
        for task in stage["tasks"]:
            task_node = stage_node.add(
                f"[green]{task['name']}[/green] [blue]{{{', '.join(task['labels'])}}}[/blue]"
            )
            for stash, producer in task["inputs"].items():
                task_node.add(f"⇐ {stash} [dim]from {producer or 'nowhere'}[/dim]")
            for step in task["steps"]:
                note = " [yellow](skipped on this branch)[/yellow]" if step["skipped"] else ""
                task_node.add(f"{step['name']} [dim]{step['kind']}[/dim]{note}")
            for stash in task["outputs"]:
                task_node.add(f"⇒ {stash}")
    console.print(root)
