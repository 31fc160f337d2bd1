"""Loguru setup for matrixci.

Every engine module obtains its logger through :func:`get_logger`. Each
record is patched with the correlation id of the run being executed
(``extra["cid"]``), so the interleaved output of parallel tasks and of
concurrent runs of one branch can be told apart.

Examples
--------
Basic usage:

>>> from matrixci.kernel.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Stage {stage} started", stage="Build")

Configure logging globally::

    from matrixci.kernel.logging import configure_logging
    configure_logging(level="DEBUG", format="rich")
"""

import contextvars
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from loguru import Logger, Record

from loguru import logger
from rich.logging import RichHandler

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich"]

_TIMESTAMP = "{time:YYYY-MM-DD HH:mm:ss} "
_STRUCTURED = (
    "<level>{level: <8}</level> <magenta>{extra[cid]}</magenta> "
    "<cyan>{name}:{function}:{line}</cyan> | <level>{message}</level>"
)
_CONSOLE = "{level: <8} | {extra[cid]} | {name} | {message}"

_CURRENT_CONFIG: dict | None = None
_HANDLER_IDS: list[int] = []

# run id of the pipeline run executing in this context
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _inject_correlation_id(record: "Record") -> None:
    record["extra"].setdefault("cid", correlation_id.get())


def _terminal_handler(format: LogFormat, use_color: bool, include_timestamp: bool) -> dict[str, Any]:
    """``logger.add`` arguments for the stderr handler of ``format``."""
    if format == "rich":
        handler = RichHandler(
            rich_tracebacks=True, markup=False, show_time=include_timestamp, show_path=False
        )
        return {"sink": handler, "format": "[{extra[cid]}] {message}"}
    if format == "json":
        return {"sink": sys.stderr, "serialize": True}
    if format == "structured":
        stamp = f"<green>{_TIMESTAMP.strip()}</green> " if include_timestamp else ""
        # loguru strips the color tags when colorize is off
        return {
            "sink": sys.stderr,
            "format": stamp + _STRUCTURED,
            "colorize": use_color and sys.stderr.isatty(),
        }
    stamp = _TIMESTAMP if include_timestamp else ""
    return {"sink": sys.stderr, "format": stamp + _CONSOLE, "colorize": False}


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    backtrace: bool = True,
    diagnose: bool = False,
) -> None:
    """Install the matrixci log handlers.

    Calling it again with the same settings is a no-op. Only handlers added
    here are replaced; sinks installed by others (pytest, an embedding
    application) are left alone.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum level
    format : LogFormat, default="structured"
        ``console`` (plain lines), ``json`` (serialized records),
        ``structured`` (colored, with module and run id) or ``rich``
    output_file : str | Path | None
        Also write JSON records to this file, rotated at 10 MB
    use_color : bool
        Colors for ``structured`` output on a TTY
    include_timestamp : bool
        Prefix records with the time
    force_reconfigure : bool
        Replace handlers even if the settings did not change
    backtrace, diagnose : bool
        Passed to loguru; keep ``diagnose`` off when logs leave the machine
    """
    global _CURRENT_CONFIG

    settings = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }
    if not force_reconfigure and settings == _CURRENT_CONFIG:
        return

    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()
    logger.configure(patcher=_inject_correlation_id)

    common: dict[str, Any] = {"level": level, "backtrace": backtrace, "diagnose": diagnose}
    _HANDLER_IDS.append(
        logger.add(**_terminal_handler(format, use_color, include_timestamp), **common)
    )
    if output_file:
        path = Path(output_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _HANDLER_IDS.append(
            logger.add(path, serialize=True, rotation="10 MB", retention=5, **common)
        )

    _CURRENT_CONFIG = settings


@lru_cache(maxsize=256)
def get_logger(name: str) -> "Logger":
    """Logger bound with ``module=name``; configures defaults on first use.

    >>> logger = get_logger("matrixci.kernel.orchestration")
    >>> logger.debug("Leased worker {worker}", worker="gpu-01")
    """
    _ensure_configured()
    return logger.bind(module=name)


def set_correlation_id(cid: str) -> contextvars.Token[str]:
    """Tag records of the current context with ``cid`` (a run id).

    Returns the token for :func:`reset_correlation_id`.
    """
    return correlation_id.set(cid)


def get_correlation_id() -> str:
    """Current run id, ``"-"`` outside of a run.

    >>> get_correlation_id()
    '-'
    """
    return correlation_id.get()


def reset_correlation_id(token: contextvars.Token[str]) -> None:
    correlation_id.reset(token)


def _ensure_configured() -> None:
    if _CURRENT_CONFIG is None:
        level = os.getenv("MATRIXCI_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("MATRIXCI_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=format_type)  # type: ignore[arg-type]
