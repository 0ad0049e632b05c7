"""Timeout enforcement for unit computes and run deadlines.

Manifesto:
    A compute without a deadline can stall a whole phase. Each attempt
    is raced against a timer, and a run-level deadline caps how long the
    orchestrator waits on any worker.

Architecture:
    ::

        run_with_timeout(func, seconds)
        ┌────────────────────────────────────────────────────────────────┐
        │ helper thread runs func (or asyncio.run(coro_func()))          │
        │ caller waits on the Future for `seconds`                       │
        │ on expiry → UnitTimeout("timeout"); helper is abandoned        │
        └────────────────────────────────────────────────────────────────┘

        Deadline.after(seconds)
        ┌────────────────────────────────────────────────────────────────┐
        │ absolute monotonic deadline passed down from the scheduler     │
        │ .remaining() / .is_expired() / .cap(timeout)                   │
        └────────────────────────────────────────────────────────────────┘

Guardrails:
    - Python threads cannot be killed: a timed-out compute keeps running
      on its helper thread until it returns; its result is discarded.
    - The helper executor is shut down without waiting, so the caller
      is never blocked past the deadline.

Tags:
    timeout, deadline, resilience, execution, tilespine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from tilespine.core.errors import UnitTimeout

T = TypeVar("T")


@dataclass(frozen=True)
class Deadline:
    """Absolute deadline on a monotonic clock.

    Attributes:
        at: Absolute deadline timestamp
        clock: Clock the deadline is measured on
    """

    at: float
    clock: Callable[[], float] = field(default=time.monotonic, compare=False, repr=False)

    @classmethod
    def after(cls, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> Deadline:
        if seconds <= 0:
            raise ValueError(f"Deadline must be positive, got {seconds}")
        return cls(at=clock() + seconds, clock=clock)

    def remaining(self) -> float:
        """Seconds left; negative once expired."""
        return self.at - self.clock()

    def is_expired(self) -> bool:
        return self.clock() >= self.at

    def cap(self, timeout_seconds: float) -> float:
        """Shorten a per-attempt timeout so it never outlives the deadline."""
        return max(0.0, min(timeout_seconds, self.remaining()))


def as_sync(func: Callable[[], Any]) -> Callable[[], Any]:
    """Adapt a coroutine function so it can run on a plain thread."""
    if inspect.iscoroutinefunction(func):
        def runner() -> Any:
            return asyncio.run(func())
        return runner
    return func


def run_with_timeout(
    func: Callable[[], T],
    timeout_seconds: float,
    operation: str | None = None,
) -> T:
    """Run a zero-argument callable on a helper thread with a timeout.

    Args:
        func: Callable (or coroutine function) to execute
        timeout_seconds: Maximum time to wait for the result
        operation: Name for the helper thread

    Returns:
        Result of ``func()``

    Raises:
        UnitTimeout: If the result is not ready in time (message ``"timeout"``)
        Exception: Any exception raised by ``func``
    """
    if timeout_seconds <= 0:
        raise UnitTimeout(timeout_seconds=timeout_seconds)

    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1,
        thread_name_prefix=f"tilespine-{operation or getattr(func, '__name__', 'compute')}",
    )
    try:
        future = executor.submit(as_sync(func))
        try:
            return future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            # func itself may have raised TimeoutError
            if future.done():
                raise
            future.cancel()
            raise UnitTimeout(timeout_seconds=timeout_seconds) from None
    finally:
        executor.shutdown(wait=False)


__all__ = ["Deadline", "as_sync", "run_with_timeout"]
