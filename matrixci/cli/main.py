"""matrixci CLI - Main entrypoint."""

from pathlib import Path
from typing import Annotated

import typer

from matrixci import __version__
from matrixci.cli.commands import plan_cmd, run_cmd, validate_cmd
from matrixci.cli.utils import ExitCode, console, err_console
from matrixci.kernel.config import load_config
from matrixci.kernel.exceptions import ConfigurationError, ValidationError
from matrixci.kernel.logging import configure_logging

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

app = typer.Typer(
    name="matrixci",
    help="matrixci - build, test and publish a project across a variant matrix.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

app.command("validate")(validate_cmd.validate)
app.command("plan")(plan_cmd.plan)
app.command("run")(run_cmd.run)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold blue]matrixci[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Configuration file (default: discovered)"),
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    ] = None,
    verbose: Annotated[bool, typer.Option("-V", "--verbose", help="Debug logging")] = False,
    quiet: Annotated[bool, typer.Option("-q", "--quiet", help="Only log errors")] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """matrixci CLI.

    Loads the configuration and sets up logging; subcommands read it from
    ``ctx.obj``.
    """
    try:
        config = load_config(config_path)
    except (ConfigurationError, ValidationError, FileNotFoundError) as e:
        err_console.print(f"[red]✗ Configuration error:[/red] {e}")
        raise typer.Exit(ExitCode.CONFIG_ERROR) from e

    level = config.logging.level
    if quiet:
        level = "ERROR"
    elif verbose:
        level = "DEBUG"
    elif log_level:
        if log_level.upper() not in _LEVELS:
            err_console.print(f"[red]✗ Unknown log level:[/red] {log_level}")
            raise typer.Exit(ExitCode.CONFIG_ERROR)
        level = log_level.upper()  # type: ignore[assignment]

    configure_logging(
        level=level,
        format=config.logging.format,
        output_file=config.logging.output_file,
        use_color=config.logging.use_color,
        include_timestamp=config.logging.include_timestamp,
        force_reconfigure=True,
        backtrace=config.logging.backtrace,
        diagnose=config.logging.diagnose,
    )

    if ctx.obj is None:
        ctx.obj = {}
    ctx.obj.update({"config": config, "log_level": level})


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
