"""Tests for timetable.core.logging."""

import json

import pytest
import structlog

from timetable.core.logging import LogContext, bind_context, clear_context, configure_logging, get_logger


class TestConfigureLogging:
    """Process-wide structlog setup."""

    def test_json_output_to_stderr(self, capsys):
        configure_logging("INFO", json_format=True)
        logger = get_logger("test")

        logger.info("chain.started", chain_id=3)
        logger.debug("filtered.out")

        captured = capsys.readouterr()
        assert captured.out == ""
        (line,) = captured.err.strip().splitlines()
        event = json.loads(line)
        assert event["event"] == "chain.started"
        assert event["chain_id"] == 3
        assert event["log.level"] == "info"
        assert event["service.name"] == "timetable"
        assert "@timestamp" in event

    def test_debug_level(self, capsys):
        configure_logging("DEBUG", json_format=True)
        get_logger("test").debug("visible")
        assert "visible" in capsys.readouterr().err


class TestLogContext:
    """Scoped context binding."""

    def test_sync_scope(self):
        with LogContext(chain_id=1, run_id=2):
            assert structlog.contextvars.get_contextvars() == {"chain_id": 1, "run_id": 2}
        assert structlog.contextvars.get_contextvars() == {}

    @pytest.mark.asyncio
    async def test_async_scope_keeps_outer_keys(self):
        bind_context(client_name="w1")
        async with LogContext(task_id=9):
            assert structlog.contextvars.get_contextvars()["task_id"] == 9
        assert structlog.contextvars.get_contextvars() == {"client_name": "w1"}
        clear_context()
