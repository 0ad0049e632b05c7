"""Tests for environment-driven settings and logging setup."""

import importlib
import io
import json

import pytest
import structlog
from pydantic import ValidationError

from tilespine.core.logging import LogContext, configure_logging, get_logger
from tilespine.core.settings import TilespineSettings, clear_settings_cache, get_settings


class TestTilespineSettings:
    """Tests for TilespineSettings."""

    def test_defaults(self):
        """Test defaults match the documented unit defaults."""
        settings = TilespineSettings()
        assert settings.refresh_interval_ms == 30_000
        assert settings.max_retries == 2
        assert settings.timeout_ms == 15_000
        assert settings.cache_ttl_ms == 60_000
        assert settings.graceful_degradation is True
        assert settings.max_concurrency == 8
        assert settings.run_timeout_seconds is None

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch):
        """Test TILESPINE_* variables override defaults."""
        monkeypatch.setenv("TILESPINE_TIMEOUT_MS", "250")
        monkeypatch.setenv("TILESPINE_GRACEFUL_DEGRADATION", "false")
        settings = TilespineSettings()
        assert settings.timeout_ms == 250
        assert settings.graceful_degradation is False

    def test_invalid_env_rejected(self, monkeypatch: pytest.MonkeyPatch):
        """Test out-of-range values fail validation."""
        monkeypatch.setenv("TILESPINE_MAX_CONCURRENCY", "0")
        with pytest.raises(ValidationError):
            TilespineSettings()

    def test_get_settings_is_cached(self, monkeypatch: pytest.MonkeyPatch):
        """Test get_settings() caches until cleared."""
        first = get_settings()
        monkeypatch.setenv("TILESPINE_MAX_RETRIES", "5")
        assert get_settings() is first

        clear_settings_cache()
        assert get_settings().max_retries == 5


class TestLogging:
    """Tests for structlog configuration."""

    @pytest.fixture(autouse=True)
    def reset_structlog(self):
        yield
        structlog.reset_defaults()

    def test_json_output_with_context(self):
        """Test JSON logs carry the event, logger name, service and bound context."""
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, service="tests", stream=stream)
        logger = get_logger("tilespine.tests")

        with LogContext(run_id="run-1"):
            logger.info("scheduler.run.start", unit_count=3)
        logger.debug("dropped")

        lines = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert len(lines) == 1
        record = lines[0]
        assert record["event"] == "scheduler.run.start"
        assert record["unit_count"] == 3
        assert record["run_id"] == "run-1"
        assert record["logger_name"] == "tilespine.tests"
        assert record["service.name"] == "tests"
        assert record["log.level"] == "info"
        assert "@timestamp" in record

    def test_context_unbound_after_block(self):
        """Test LogContext removes its keys on exit."""
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, stream=stream)
        logger = get_logger(__name__)

        with LogContext(run_id="run-2"):
            pass
        logger.info("after")

        record = json.loads(stream.getvalue().splitlines()[-1])
        assert "run_id" not in record

    def test_logger_created_before_configure(self):
        """Test a module-level logger picks up configuration done after it was created."""
        logger = get_logger("tilespine.early")
        stream = io.StringIO()
        configure_logging(level="INFO", json_format=True, stream=stream)

        logger.info("late.configured", unit_id="a")

        record = json.loads(stream.getvalue().splitlines()[-1])
        assert record["event"] == "late.configured"
        assert record["logger_name"] == "tilespine.early"
        assert record["unit_id"] == "a"

    def test_package_modules_import(self):
        """Test every module-level logger in the package can be created."""
        for module in (
            "tilespine.execution.wrapper",
            "tilespine.orchestration.scheduler",
            "tilespine.orchestration.subscriptions",
        ):
            assert importlib.import_module(module).logger is not None
