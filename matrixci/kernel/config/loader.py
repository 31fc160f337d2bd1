"""Configuration loader for matrixci.

Parses TOML configuration into the frozen models of
``matrixci.kernel.config.models``. Discovery order:

1. Explicit path argument
2. ``MATRIXCI_CONFIG_PATH`` env var
3. ``matrixci.toml`` in the current directory
4. ``pyproject.toml`` with a ``[tool.matrixci]`` table, in the current
   directory or any parent

String values may reference environment variables as ``${VAR}`` or
``${VAR:default}``. ``MATRIXCI_LOG_*`` variables override the logging table.
"""

from __future__ import annotations

import os
import re
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from matrixci.kernel.config.models import (
    EngineConfig,
    LoggingConfig,
    MatrixCIConfig,
    WorkerConfig,
)
from matrixci.kernel.exceptions import ConfigurationError, ValidationError
from matrixci.kernel.logging import get_logger

CONFIG_FILENAME = "matrixci.toml"
CONFIG_PATH_ENV = "MATRIXCI_CONFIG_PATH"

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

logger = get_logger(__name__)


def _parse_bool_env(value: str) -> bool:
    """Parse a boolean from an environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return _parse_bool_env(value)
        except ValueError as e:
            raise ConfigurationError(name, str(e)) from e
    raise ConfigurationError(name, f"expected a boolean, got {value!r}")


def _as_float(value: Any, name: str) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(name, f"expected a number, got {value!r}") from e


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(name, f"expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(name, f"expected an integer, got {value!r}") from e


class ConfigLoader:
    """Loads and processes matrixci configuration files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")

    def load_config_file(self, path: str | Path | None = None) -> MatrixCIConfig:
        """Load configuration from a TOML file.

        Raises
        ------
        FileNotFoundError
            If an explicit path does not exist or no file is discovered
        """
        config_path = self._find_config_file(path)
        return _load_and_parse_cached(str(config_path.absolute()))

    def _load_and_parse(self, config_path: Path) -> MatrixCIConfig:
        logger.info("Loading configuration from {path}", path=config_path)
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(str(config_path), f"invalid TOML: {e}") from e

        tool_data = data.get("tool", {}).get("matrixci")
        if tool_data is not None:
            data = tool_data
        elif config_path.name == "pyproject.toml":
            logger.warning("No [tool.matrixci] section found in pyproject.toml, using defaults")
            return get_default_config()

        return self._parse_config(self._substitute_env_vars(data))

    def _find_config_file(self, path: str | Path | None) -> Path:
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv(CONFIG_PATH_ENV):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from {env}: {path}", env=CONFIG_PATH_ENV, path=config_path)
                return config_path
            logger.warning(
                "{env} set but file not found: {path}", env=CONFIG_PATH_ENV, path=config_path
            )

        if Path(CONFIG_FILENAME).exists():
            return Path(CONFIG_FILENAME)

        current = Path.cwd()
        while True:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    data = tomllib.load(f)
                if "matrixci" in data.get("tool", {}):
                    return pyproject
            if current == current.parent:
                break
            current = current.parent

        raise FileNotFoundError(
            f"No configuration file found. Provide a path, set {CONFIG_PATH_ENV}, "
            f"create {CONFIG_FILENAME}, or add [tool.matrixci] to pyproject.toml"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute ``${VAR}`` / ``${VAR:default}`` in strings.

        Unset variables without a default keep their placeholder.
        """
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name, default = match.group(1), match.group(2)
                value = os.environ.get(var_name)
                if value is not None:
                    return value
                if default is not None:
                    return default
                logger.debug(
                    "Environment variable ${{{var_name}}} not found, keeping placeholder",
                    var_name=var_name,
                )
                return match.group(0)

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any]) -> MatrixCIConfig:
        try:
            return MatrixCIConfig(
                logging=self._parse_logging_config(data.get("logging", {})),
                engine=self._parse_engine_config(data.get("engine", {})),
            )
        except ValidationError as e:
            raise ConfigurationError("matrixci config", str(e)) from e

    def _parse_engine_config(self, data: dict[str, Any]) -> EngineConfig:
        defaults = EngineConfig()
        workers = tuple(
            WorkerConfig(
                id=str(w.get("id", "")),
                labels=tuple(w.get("labels", ())),
                count=_as_int(w.get("count", 1), "engine.workers.count"),
            )
            for w in data.get("workers", [])
        )
        return EngineConfig(
            run_timeout=_as_float(data.get("run_timeout", defaults.run_timeout), "run_timeout"),
            checkout_attempts=_as_int(
                data.get("checkout_attempts", defaults.checkout_attempts), "checkout_attempts"
            ),
            checkout_timeout=_as_float(
                data.get("checkout_timeout", defaults.checkout_timeout), "checkout_timeout"
            ),
            max_retained_runs=_as_int(
                data.get("max_retained_runs", defaults.max_retained_runs), "max_retained_runs"
            ),
            retention_seconds=_as_float(data.get("retention_seconds"), "retention_seconds"),
            artifact_root=data.get("artifact_root") or None,
            workspace_root=data.get("workspace_root") or None,
            mainline_branch=str(data.get("mainline_branch", defaults.mainline_branch)),
            release_pattern=str(data.get("release_pattern", defaults.release_pattern)),
            workers=workers,
        )

    def _parse_logging_config(self, logging_data: dict[str, Any]) -> LoggingConfig:
        """Parse logging configuration with environment variable overrides.

        Environment variables take precedence over config file values:
        - MATRIXCI_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        - MATRIXCI_LOG_FORMAT: Output format (console, json, structured, rich)
        - MATRIXCI_LOG_FILE: Optional file path for log output
        - MATRIXCI_LOG_COLOR: Use color output (true/false)
        """
        level = str(logging_data.get("level", "INFO")).upper()
        format_type = str(logging_data.get("format", "structured")).lower()
        output_file = logging_data.get("output_file")
        use_color = _as_bool(logging_data.get("use_color", True), "logging.use_color")
        include_timestamp = _as_bool(
            logging_data.get("include_timestamp", True), "logging.include_timestamp"
        )
        backtrace = _as_bool(logging_data.get("backtrace", True), "logging.backtrace")
        diagnose = _as_bool(logging_data.get("diagnose", False), "logging.diagnose")

        if env_level := os.getenv("MATRIXCI_LOG_LEVEL"):
            level = env_level.upper()
            logger.debug("Overriding log level from env: {}", level)

        if env_format := os.getenv("MATRIXCI_LOG_FORMAT"):
            format_type = env_format.lower()
            logger.debug("Overriding log format from env: {}", format_type)

        if env_file := os.getenv("MATRIXCI_LOG_FILE"):
            output_file = env_file
            logger.debug("Overriding log file from env: {}", output_file)

        if env_color := os.getenv("MATRIXCI_LOG_COLOR"):
            try:
                use_color = _parse_bool_env(env_color)
            except ValueError as e:
                logger.warning("Invalid MATRIXCI_LOG_COLOR value: {}", e)

        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError("logging.level", f"unknown level {level!r}")
        if format_type not in ("console", "json", "structured", "rich"):
            raise ConfigurationError("logging.format", f"unknown format {format_type!r}")

        return LoggingConfig(
            level=cast("Any", level),
            format=cast("Any", format_type),
            output_file=output_file,
            use_color=use_color,
            include_timestamp=include_timestamp,
            backtrace=backtrace,
            diagnose=diagnose,
        )


@lru_cache(maxsize=32)
def _load_and_parse_cached(path_str: str) -> MatrixCIConfig:
    return ConfigLoader()._load_and_parse(Path(path_str))


def load_config(path: str | Path | None = None) -> MatrixCIConfig:
    """Load configuration from file, or return defaults when none is found.

    An explicit ``path`` that does not exist is an error; failed discovery is not.
    """
    loader = ConfigLoader()
    if path is not None:
        return loader.load_config_file(path)
    try:
        return loader.load_config_file(None)
    except FileNotFoundError:
        logger.info("No configuration file found, using defaults")
        return get_default_config()


def clear_config_cache() -> None:
    """Clear configuration caches, e.g. between tests."""
    _load_and_parse_cached.cache_clear()


def get_default_config() -> MatrixCIConfig:
    return MatrixCIConfig()
