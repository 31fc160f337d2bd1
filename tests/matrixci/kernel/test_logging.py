"""Tests for loguru configuration and run correlation ids."""

import asyncio
import json
from pathlib import Path

import pytest
from loguru import logger

import matrixci.kernel.logging as logging_module
from matrixci.kernel.logging import (
    configure_logging,
    get_correlation_id,
    get_logger,
    reset_correlation_id,
    set_correlation_id,
)


class TestGetLogger:
    def test_cached_per_name(self) -> None:
        assert get_logger("matrixci.test") is get_logger("matrixci.test")
        assert get_logger("matrixci.a") is not get_logger("matrixci.b")


class TestConfigureLogging:
    def setup_method(self) -> None:
        logger.remove()
        logging_module._HANDLER_IDS.clear()
        logging_module._CURRENT_CONFIG = None

    def teardown_method(self) -> None:
        configure_logging(force_reconfigure=True)

    @pytest.mark.parametrize("fmt", ["console", "json", "structured", "rich"])
    def test_formats(self, fmt: str) -> None:
        configure_logging(level="INFO", format=fmt)
        assert len(logger._core.handlers) == 1

    def test_idempotent(self) -> None:
        configure_logging(level="DEBUG", format="console")
        configure_logging(level="DEBUG", format="console")
        assert len(logger._core.handlers) == 1

    def test_reconfigure_replaces_own_handlers(self) -> None:
        configure_logging(level="INFO", format="console")
        configure_logging(level="DEBUG", format="structured")
        assert len(logger._core.handlers) == 1
        assert logging_module._CURRENT_CONFIG["level"] == "DEBUG"

    def test_file_output_is_json_with_correlation_id(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "runs.log"
        configure_logging(level="INFO", format="console", output_file=log_file)
        assert len(logger._core.handlers) == 2

        token = set_correlation_id("main-line#7")
        try:
            get_logger("matrixci.test").info("Stage {stage} started", stage="Build")
        finally:
            reset_correlation_id(token)
        logger.complete()

        records = [json.loads(line) for line in log_file.read_text().splitlines()]
        record = records[-1]["record"]
        assert record["message"] == "Stage Build started"
        assert record["extra"]["cid"] == "main-line#7"


class TestCorrelationId:
    def test_default_and_reset(self) -> None:
        assert get_correlation_id() == "-"
        token = set_correlation_id("feature-x#2")
        assert get_correlation_id() == "feature-x#2"
        reset_correlation_id(token)
        assert get_correlation_id() == "-"

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self) -> None:
        seen: dict[str, str] = {}

        async def run(run_id: str) -> None:
            set_correlation_id(run_id)
            await asyncio.sleep(0.01)
            seen[run_id] = get_correlation_id()

        await asyncio.gather(run("main-line#1"), run("main-line#2"))
        assert seen == {"main-line#1": "main-line#1", "main-line#2": "main-line#2"}
        assert get_correlation_id() == "-"
