"""Core primitives: report model, cache, errors, events, logging and settings."""

from tilespine.core.cache import CacheEntry, ReportCache
from tilespine.core.errors import (
    ComputeFailure,
    ConfigurationError,
    ErrorCategory,
    ErrorContext,
    OrchestrationError,
    TilespineError,
    UnitTimeout,
)
from tilespine.core.models import (
    DEFAULT_LAYOUT,
    Phase,
    PhaseLayout,
    Report,
    Signal,
    UnitDescriptor,
    UnitState,
    UnitStatus,
    sequential_layout,
)

__all__ = [
    "CacheEntry",
    "ComputeFailure",
    "ConfigurationError",
    "DEFAULT_LAYOUT",
    "ErrorCategory",
    "ErrorContext",
    "OrchestrationError",
    "Phase",
    "PhaseLayout",
    "Report",
    "ReportCache",
    "Signal",
    "TilespineError",
    "UnitDescriptor",
    "UnitState",
    "UnitStatus",
    "UnitTimeout",
    "sequential_layout",
]
