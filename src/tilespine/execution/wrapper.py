"""Resilient execution of a single unit.

Every unit holds one :class:`ResilientExecutor`. The executor owns the
unit's cache, circuit breaker and state, and turns a fallible, possibly
slow compute function into a call that always returns a
:class:`~tilespine.core.models.Report`.

ARCHITECTURE
────────────
::

    execute(key, deadline)
      │
      ├─ 1. in-flight Future for key?  ──► wait, return the same Report
      ├─ 2. fresh cache entry?         ──► return cached Report (no compute)
      ├─ 3. breaker open?              ──► degrade / error ("circuit open")
      ├─ 4. attempt loop
      │      run_with_timeout(compute, min(timeout, deadline.remaining()))
      │      raise / timeout / success=False  → failure, backoff, retry
      ├─ 5. success  ──► stamp, cache, state=success, unit:success
      └─ 6. exhausted ─► state=error, unit:error, then
                           graceful:  degraded report, state=degraded
                           otherwise: error report,    state=idle

State machine::

    idle ──► running ──► success
                    └──► error ──► degraded | idle

Example::

    executor = ResilientExecutor(
        "net_liquidity",
        compute=engine.compute,
        config=ConfigBuilder().with_timeout_ms(2_000).build(),
    )
    report = executor.execute()
    if report.degraded:
        print(report.degraded_reason)

Tags:
    tilespine, execution, resilience, single-flight, retry, timeout

Doc-Types:
    api-reference
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from tilespine.core.cache import ReportCache
from tilespine.core.errors import ComputeFailure, UnitTimeout
from tilespine.core.events import (
    UNIT_DEGRADED,
    UNIT_ERROR,
    UNIT_START,
    UNIT_SUCCESS,
    Event,
    EventBus,
)
from tilespine.core.logging import get_logger
from tilespine.core.models import Report, UnitState, UnitStatus, utcnow
from tilespine.execution.circuit_breaker import CircuitBreaker, CircuitState
from tilespine.execution.config import UnitConfig
from tilespine.execution.retry import ExponentialBackoff, RetryStrategy, strategy_for
from tilespine.execution.timeout import Deadline, as_sync, run_with_timeout

logger = get_logger(__name__)

DEFAULT_KEY = "default"
CIRCUIT_OPEN = "circuit open"
DEADLINE_EXCEEDED = "deadline exceeded"

ComputeFn = Callable[[], Report]


@runtime_checkable
class Engine(Protocol):
    """What engine authors implement: one fallible compute operation."""

    def compute(self) -> Report:
        ...


def resolve_compute(unit: Engine | ComputeFn) -> ComputeFn:
    """Return the compute callable of an engine object or plain callable."""
    compute = getattr(unit, "compute", None)
    if callable(compute):
        return compute
    if callable(unit):
        return unit
    raise TypeError(f"{type(unit).__name__} has no compute() and is not callable")


def _failure_message(error: BaseException) -> str:
    if isinstance(error, UnitTimeout):
        return "timeout"
    message = str(error)
    return message or type(error).__name__


class ResilientExecutor:
    """Single-flight, cached, timeout-guarded, retrying executor for one unit."""

    def __init__(
        self,
        unit_id: str,
        compute: ComputeFn,
        config: UnitConfig | None = None,
        *,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        retry: RetryStrategy | None = None,
        rng: random.Random | None = None,
    ):
        """Initialise the executor.

        Args:
            unit_id: Id of the unit being wrapped
            compute: Zero-argument compute (plain or coroutine function)
            config: Resilience settings (defaults to ``UnitConfig()``)
            event_bus: Receives ``unit:*`` lifecycle events
            clock: Monotonic clock used for TTLs and durations
            sleep: Backoff sleep, injectable for tests
            retry: Retry strategy override (derived from config otherwise)
            rng: Random source for jitter
        """
        self.unit_id = unit_id
        self._compute = as_sync(compute)
        self._config = config or UnitConfig()
        self._event_bus = event_bus
        self._clock = clock
        self._sleep = sleep

        if retry is not None:
            self._retry = retry
        elif rng is not None and self._config.max_retries > 0:
            self._retry = ExponentialBackoff.from_config(self._config, rng=rng)
        else:
            self._retry = strategy_for(self._config)

        self._cache = ReportCache(clock=clock)
        self._breaker = CircuitBreaker(
            name=unit_id,
            failure_threshold=self._config.circuit_breaker_threshold,
            recovery_timeout=self._config.circuit_recovery_seconds,
            clock=clock,
        )

        self._lock = threading.Lock()
        self._inflight: dict[str, Future[Report]] = {}
        self._state = UnitState.IDLE
        self._last_report: Report | None = None
        self._last_good: Report | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0
        self._last_success: datetime | None = None
        self._last_success_at: float | None = None
        self._last_duration_ms: float | None = None
        self._executions = 0
        self._cache_hits = 0

    # ── Public API ───────────────────────────────────────────────

    @property
    def config(self) -> UnitConfig:
        return self._config

    @property
    def state(self) -> UnitState:
        return self._state

    @property
    def cache(self) -> ReportCache:
        return self._cache

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._inflight)

    def execute(self, key: str = DEFAULT_KEY, *, deadline: Deadline | None = None) -> Report:
        """Run the unit, returning a report in every case.

        Concurrent callers for the same ``key`` share one physical
        computation and receive the same ``Report`` instance.

        Args:
            key: Cache / single-flight key (e.g. a parameter fingerprint)
            deadline: Absolute deadline from the caller's run

        Returns:
            Fresh, cached, degraded or error report
        """
        with self._lock:
            pending = self._inflight.get(key)
            leader = pending is None
            if leader:
                cached = self._fresh_cached(key)
                if cached is not None:
                    self._cache_hits += 1
                    logger.debug("unit.execute.cache_hit", unit_id=self.unit_id, key=key)
                    return cached
                pending = Future()
                self._inflight[key] = pending

        if not leader:
            logger.debug("unit.execute.joined_inflight", unit_id=self.unit_id, key=key)
            return pending.result()

        try:
            report = self._run(key, deadline)
        except BaseException as exc:
            pending.set_exception(exc)
            raise
        else:
            pending.set_result(report)
        finally:
            with self._lock:
                self._inflight.pop(key, None)
        return report

    def expire(self, reason: str = DEADLINE_EXCEEDED, errors: tuple[str, ...] = ()) -> Report:
        """Synthesise the exhausted-retries outcome without computing.

        Used by the scheduler for units still pending when a run deadline
        passes: they degrade or error exactly as an internal timeout would.
        """
        start = self._clock()
        with self._lock:
            self._executions += 1
        return self._exhausted(list(errors) or [reason], reason, start, attempts=0)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one cached report, or all of them."""
        if key is None:
            self._cache.clear()
        else:
            self._cache.delete(key)

    def reset(self) -> None:
        """Release cache, breaker and state (used on unregistration)."""
        self._cache.clear()
        self._breaker.reset()
        with self._lock:
            self._state = UnitState.IDLE
            self._last_report = None
            self._last_good = None
            self._last_error = None
            self._consecutive_failures = 0

    def status(self) -> UnitStatus:
        """Snapshot of the executor's observable state."""
        with self._lock:
            return UnitStatus(
                unit_id=self.unit_id,
                state=self._state,
                last_report=self._last_report,
                last_good=self._last_good,
                last_error=self._last_error,
                consecutive_failures=self._consecutive_failures,
                last_success=self._last_success,
                last_duration_ms=self._last_duration_ms,
                executions=self._executions,
                cache_hits=self._cache_hits,
                circuit_state=self._breaker.state.value,
            )

    def is_healthy(self) -> bool:
        """Healthy when not failing and the breaker is closed."""
        return (
            self._state in (UnitState.IDLE, UnitState.SUCCESS)
            and self._consecutive_failures == 0
            and self._breaker.state == CircuitState.CLOSED
        )

    def age_seconds(self) -> float:
        """Seconds since the last genuine success (``inf`` if never)."""
        if self._last_success_at is None:
            return float("inf")
        return self._clock() - self._last_success_at

    # ── Internals ────────────────────────────────────────────────

    def _fresh_cached(self, key: str) -> Report | None:
        if self._config.cache_ttl_ms <= 0:
            return None
        return self._cache.get(key)

    def _set_state(self, state: UnitState) -> None:
        with self._lock:
            self._state = state

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self._event_bus is None:
            return
        self._event_bus.publish(
            Event(event_type=event_type, source="wrapper", payload={"unit_id": self.unit_id, **payload})
        )

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000.0

    def _run(self, key: str, deadline: Deadline | None) -> Report:
        start = self._clock()
        with self._lock:
            self._executions += 1
        self._set_state(UnitState.RUNNING)
        self._emit(UNIT_START)

        if not self._breaker.allow_request():
            logger.info("unit.execute.circuit_open", unit_id=self.unit_id)
            return self._exhausted([CIRCUIT_OPEN], CIRCUIT_OPEN, start, attempts=0, count_failure=False)

        errors: list[str] = []
        attempt = 0
        while True:
            if deadline is not None and deadline.is_expired():
                errors.append(DEADLINE_EXCEEDED)
                break

            attempt += 1
            timeout = self._config.timeout_seconds
            if deadline is not None:
                timeout = deadline.cap(timeout)

            try:
                report = run_with_timeout(self._compute, timeout, operation=self.unit_id)
                if not isinstance(report, Report):
                    raise ComputeFailure(f"compute returned {type(report).__name__}, expected Report")
                if not report.success:
                    raise ComputeFailure(
                        report.errors[0] if report.errors else "compute reported failure",
                        soft=True,
                    )
            except Exception as exc:
                message = _failure_message(exc)
                errors.append(message)
                logger.warning(
                    "unit.execute.attempt_failed",
                    unit_id=self.unit_id,
                    attempt=attempt,
                    error=message,
                    soft=getattr(exc, "soft", False),
                )
                if not self._retry.should_retry(attempt, exc):
                    break
                delay = self._retry.next_delay(attempt)
                if deadline is not None and deadline.remaining() <= delay:
                    errors.append(DEADLINE_EXCEEDED)
                    break
                self._sleep(delay)
                continue

            return self._succeeded(key, report, start, attempt)

        return self._exhausted(errors, errors[-1], start, attempts=attempt)

    def _succeeded(self, key: str, report: Report, start: float, attempts: int) -> Report:
        duration_ms = self._elapsed_ms(start)
        report = report.stamped(unit_id=self.unit_id, duration_ms=duration_ms)

        if self._config.cache_ttl_ms > 0:
            self._cache.set(key, report, ttl_seconds=self._config.cache_ttl_seconds)
        self._breaker.record_success()

        with self._lock:
            self._state = UnitState.SUCCESS
            self._last_report = report
            self._last_good = report
            self._last_error = None
            self._consecutive_failures = 0
            self._last_success = utcnow()
            self._last_success_at = self._clock()
            self._last_duration_ms = duration_ms

        logger.info(
            "unit.execute.success",
            unit_id=self.unit_id,
            attempts=attempts,
            duration_ms=round(duration_ms, 3),
            confidence=report.confidence,
        )
        self._emit(UNIT_SUCCESS, duration_ms=duration_ms, attempts=attempts)
        return report

    def _exhausted(
        self,
        errors: list[str],
        reason: str,
        start: float,
        *,
        attempts: int,
        count_failure: bool = True,
    ) -> Report:
        duration_ms = self._elapsed_ms(start)
        if count_failure:
            self._breaker.record_failure()

        with self._lock:
            self._state = UnitState.ERROR
            self._last_error = reason
            self._consecutive_failures += 1
            self._last_duration_ms = duration_ms
            last_good = self._last_good

        logger.warning(
            "unit.execute.exhausted",
            unit_id=self.unit_id,
            attempts=attempts,
            errors=errors,
            graceful=self._config.graceful_degradation,
        )
        self._emit(UNIT_ERROR, duration_ms=duration_ms, attempts=attempts, errors=list(errors))

        if self._config.graceful_degradation:
            report: Report = Report.degraded_from(
                last_good,
                reason,
                damping=self._config.degradation_factor,
                floor=self._config.confidence_floor,
                errors=errors,
            ).stamped(unit_id=self.unit_id, duration_ms=duration_ms)
            next_state = UnitState.DEGRADED
        else:
            report = Report.failure(*errors).stamped(unit_id=self.unit_id, duration_ms=duration_ms)
            next_state = UnitState.IDLE

        with self._lock:
            self._state = next_state
            self._last_report = report

        if report.degraded:
            self._emit(UNIT_DEGRADED, duration_ms=duration_ms, attempts=attempts, reason=reason)
        return report


__all__ = [
    "CIRCUIT_OPEN",
    "ComputeFn",
    "DEADLINE_EXCEEDED",
    "DEFAULT_KEY",
    "Engine",
    "ResilientExecutor",
    "resolve_compute",
]
