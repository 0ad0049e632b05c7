"""
tilespine: resilient execution and phased orchestration of analytic units.

A unit is anything with a ``compute()`` returning a ``Report``. The
registry wraps each unit in a ``ResilientExecutor`` (single-flight,
TTL cache, timeout, retry with backoff, graceful degradation) and the
orchestrator runs the registry stage by stage with bounded concurrency,
publishing every report to its subscribers.

Example::

    from tilespine import Orchestrator, Phase, Report, UnitDescriptor, UnitRegistry

    registry = UnitRegistry()
    registry.register(lambda: Report.ok({"value": 1.2}, confidence=0.9),
                      UnitDescriptor(id="net_liquidity", phase=Phase.FOUNDATION))
    results = Orchestrator(registry).run_all()
"""

from tilespine.core.models import (
    DEFAULT_LAYOUT,
    Phase,
    Report,
    Signal,
    UnitDescriptor,
    UnitState,
    sequential_layout,
)
from tilespine.execution.config import ConfigBuilder, UnitConfig
from tilespine.execution.wrapper import ResilientExecutor
from tilespine.orchestration.registry import UnitRegistry
from tilespine.orchestration.scheduler import Orchestrator
from tilespine.orchestration.subscriptions import SubscriptionBus

__version__ = "0.1.0"

__all__ = [
    "ConfigBuilder",
    "DEFAULT_LAYOUT",
    "Orchestrator",
    "Phase",
    "Report",
    "ResilientExecutor",
    "Signal",
    "SubscriptionBus",
    "UnitConfig",
    "UnitDescriptor",
    "UnitRegistry",
    "UnitState",
    "__version__",
    "sequential_layout",
]
