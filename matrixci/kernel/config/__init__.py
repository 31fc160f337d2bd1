"""Configuration loading and management for matrixci."""

from matrixci.kernel.config.loader import (
    ConfigLoader,
    clear_config_cache,
    get_default_config,
    load_config,
)
from matrixci.kernel.config.models import (
    EngineConfig,
    LoggingConfig,
    MatrixCIConfig,
    WorkerConfig,
)

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "LoggingConfig",
    "MatrixCIConfig",
    "WorkerConfig",
    "clear_config_cache",
    "get_default_config",
    "load_config",
]
