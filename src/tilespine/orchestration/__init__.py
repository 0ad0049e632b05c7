"""Orchestration: registry, planning, scheduling, subscriptions and refresh.

Modules
-------
exceptions      RegistrationError, CycleDetectedError, PhaseOrderError, UnknownUnitError
registry        UnitRegistry -- descriptor table with cycle and phase-order validation
planner         build_plan -- layout stages of unit ids in (priority, id) order
scheduler       Orchestrator -- staged, bounded-concurrency runs with a deadline
subscriptions   SubscriptionBus -- per-unit report listeners
health          SystemHealth rollup
refresh         RefreshLoop -- periodic run_all on a daemon thread
"""

from tilespine.orchestration.exceptions import (
    CycleDetectedError,
    PhaseOrderError,
    RegistrationError,
    UnknownUnitError,
)
from tilespine.orchestration.health import SystemHealth
from tilespine.orchestration.planner import ExecutionPlan, PlanStage, build_plan
from tilespine.orchestration.refresh import RefreshLoop
from tilespine.orchestration.registry import RegisteredUnit, UnitRegistry
from tilespine.orchestration.scheduler import Orchestrator, RunSummary
from tilespine.orchestration.subscriptions import SubscriptionBus, Unsubscribe

__all__ = [
    "CycleDetectedError",
    "ExecutionPlan",
    "Orchestrator",
    "PhaseOrderError",
    "PlanStage",
    "RefreshLoop",
    "RegisteredUnit",
    "RegistrationError",
    "RunSummary",
    "SubscriptionBus",
    "SystemHealth",
    "UnitRegistry",
    "UnknownUnitError",
    "Unsubscribe",
    "build_plan",
]
