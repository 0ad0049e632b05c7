"""
Shared pytest fixtures and configuration for tilespine tests.

This module provides:
- Settings isolation (no ``TILESPINE_*`` environment leaks between tests)
- A controllable monotonic clock
- Fast unit configs for registry / orchestrator tests

Engines and helpers live in ``tests/_support/engines.py``.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import pytest

from tests._support.engines import FakeClock
from tilespine.core.settings import clear_settings_cache
from tilespine.execution.config import ConfigBuilder, UnitConfig
from tilespine.orchestration.registry import UnitRegistry
from tilespine.orchestration.scheduler import Orchestrator


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if test_path.parts[0] in ("orchestration", "cli"):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Clear ``TILESPINE_*`` variables and the settings cache around each test."""
    for key in list(os.environ):
        if key.startswith("TILESPINE_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_config() -> UnitConfig:
    """No retries, no cache hits, short timeout, breaker off."""
    return (
        ConfigBuilder()
        .with_timeout_ms(1_000)
        .with_max_retries(0)
        .with_cache_ttl_ms(0)
        .with_backoff(base_ms=1, cap_ms=5, jitter_ms=0)
        .with_circuit_breaker(threshold=0)
        .build()
    )


@pytest.fixture
def registry(fast_config: UnitConfig) -> UnitRegistry:
    return UnitRegistry(defaults=fast_config)


@pytest.fixture
def orchestrator(registry: UnitRegistry) -> Generator[Orchestrator, None, None]:
    orch = Orchestrator(registry, max_concurrency=4)
    yield orch
    orch.close()
