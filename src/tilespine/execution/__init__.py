"""Per-unit resilient execution: config, retry, timeout, breaker and wrapper."""

from tilespine.execution.circuit_breaker import CircuitBreaker, CircuitState, CircuitStats
from tilespine.execution.config import ConfigBuilder, UnitConfig
from tilespine.execution.retry import ExponentialBackoff, NoRetry, RetryStrategy, strategy_for
from tilespine.execution.timeout import Deadline, as_sync, run_with_timeout
from tilespine.execution.wrapper import (
    CIRCUIT_OPEN,
    DEADLINE_EXCEEDED,
    DEFAULT_KEY,
    ComputeFn,
    Engine,
    ResilientExecutor,
    resolve_compute,
)

__all__ = [
    "CIRCUIT_OPEN",
    "CircuitBreaker",
    "CircuitState",
    "CircuitStats",
    "ComputeFn",
    "ConfigBuilder",
    "DEADLINE_EXCEEDED",
    "DEFAULT_KEY",
    "Deadline",
    "Engine",
    "ExponentialBackoff",
    "NoRetry",
    "ResilientExecutor",
    "RetryStrategy",
    "UnitConfig",
    "as_sync",
    "resolve_compute",
    "run_with_timeout",
    "strategy_for",
]
