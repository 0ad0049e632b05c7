"""Per-unit circuit breaker.

Stops a repeatedly failing unit from being recomputed on every run.
While the breaker is open the wrapper serves the unit's last known good
report (as a degraded report) instead of calling compute, which keeps a
flapping upstream from flipping tiles between data and errors.

States::

    CLOSED ──(threshold exhausted executions)──► OPEN
    OPEN ──(recovery_timeout elapsed)──► HALF_OPEN   one trial compute
    HALF_OPEN ──success──► CLOSED
    HALF_OPEN ──failure──► OPEN

A threshold of 0 disables the breaker: it never opens.

Example:
    >>> breaker = CircuitBreaker(name="credit_stress", failure_threshold=3, recovery_timeout=60.0)
    >>> if breaker.allow_request():
    ...     report = compute()
    ...     breaker.record_success()
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from tilespine.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    """Counters since the breaker was created (``reset`` keeps them)."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0

    @property
    def failure_rate(self) -> float:
        """Failed share of recorded outcomes, in percent."""
        outcomes = self.successful_requests + self.failed_requests
        return 100.0 * self.failed_requests / outcomes if outcomes else 0.0


class CircuitBreaker:
    """Breaker guarding one unit's compute.

    Args:
        name: Unit id, used in log records
        failure_threshold: Consecutive exhausted executions before opening
        recovery_timeout: Seconds to stay open before the half-open trial
        clock: Monotonic clock
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_taken = False
        self._stats = CircuitStats()

    @property
    def enabled(self) -> bool:
        return self.failure_threshold > 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def failure_count(self) -> int:
        return self._failures

    def allow_request(self) -> bool:
        """Whether the next execution may call compute."""
        if not self.enabled:
            return True

        with self._lock:
            self._maybe_half_open()
            self._stats.total_requests += 1
            allowed = self._state == CircuitState.CLOSED or (
                self._state == CircuitState.HALF_OPEN and not self._trial_taken
            )
            if self._state == CircuitState.HALF_OPEN and allowed:
                self._trial_taken = True
            if not allowed:
                self._stats.rejected_requests += 1
            return allowed

    def record_success(self) -> None:
        with self._lock:
            self._stats.successful_requests += 1
            self._failures = 0
            if self._state != CircuitState.CLOSED:
                self._move(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Count one execution whose attempts were all exhausted."""
        if not self.enabled:
            return

        with self._lock:
            self._failures += 1
            self._stats.failed_requests += 1
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED and self._failures >= self.failure_threshold
            ):
                self._move(CircuitState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._trial_taken = False
            if self._state != CircuitState.CLOSED:
                self._move(CircuitState.CLOSED)

    def _maybe_half_open(self) -> None:
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.recovery_timeout:
            self._move(CircuitState.HALF_OPEN)

    def _move(self, state: CircuitState) -> None:
        previous, self._state = self._state, state
        self._stats.state_changes += 1
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif state == CircuitState.HALF_OPEN:
            self._trial_taken = False
        logger.info(
            "circuit.transition",
            unit_id=self.name,
            from_state=previous.value,
            to_state=state.value,
            failures=self._failures,
        )


__all__ = ["CircuitBreaker", "CircuitState", "CircuitStats"]
