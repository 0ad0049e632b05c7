"""Test engines, a controllable clock and descriptor shorthand."""

from __future__ import annotations

import threading
import time
from typing import Any

from tilespine.core.models import Phase, Report, UnitDescriptor


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingEngine:
    """Engine whose ``compute()`` counts calls and follows a script.

    Args:
        name: Label used in the ordering log
        confidence: Confidence of successful reports
        delay: Seconds each compute sleeps
        fail_first: Number of initial calls that raise
        always_fail: Every call raises
        data: Payload of successful reports (a fresh copy per call)
        log: Shared list the engine appends ``("start"|"end", name)`` to
    """

    def __init__(
        self,
        name: str = "engine",
        *,
        confidence: float = 0.9,
        delay: float = 0.0,
        fail_first: int = 0,
        always_fail: bool = False,
        data: dict[str, Any] | None = None,
        log: list[tuple[str, str]] | None = None,
    ):
        self.name = name
        self.confidence = confidence
        self.delay = delay
        self.fail_first = fail_first
        self.always_fail = always_fail
        self.data = data if data is not None else {"value": 1}
        self.log = log
        self.calls = 0
        self._lock = threading.Lock()

    def compute(self) -> Report:
        with self._lock:
            self.calls += 1
            call = self.calls
            if self.log is not None:
                self.log.append(("start", self.name))
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.always_fail or call <= self.fail_first:
                raise RuntimeError(f"{self.name} failed (call {call})")
            return Report.ok(dict(self.data), confidence=self.confidence)
        finally:
            if self.log is not None:
                with self._lock:
                    self.log.append(("end", self.name))

class ScriptedEngine:
    """Engine that replays a script: each step is a ``Report`` to return or an exception to raise.

    The last step repeats once the script runs out.
    """

    def __init__(self, *steps: Report | Exception):
        self.steps = list(steps)
        self.calls = 0

    def compute(self) -> Report:
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return step



def descriptor(unit_id: str, phase: Phase = Phase.FOUNDATION, **kwargs: Any) -> UnitDescriptor:
    """Shorthand for building descriptors in tests."""
    return UnitDescriptor(id=unit_id, phase=phase, **kwargs)
