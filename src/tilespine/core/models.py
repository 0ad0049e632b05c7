"""
Core value types shared by the wrapper, registry and scheduler.

Manifesto:
    A unit's result is an immutable ``Report``. Consumers read
    ``success``, ``confidence`` and ``signal`` without probing the
    payload; the payload type is a parameter of the report so each unit
    category can declare what it carries.

Architecture:
    ::

        Report[T]        success, confidence, signal, data: T, errors, timestamp,
                         degraded, degraded_reason, stale_since
        Signal           bullish | bearish | neutral
        UnitState        idle | running | success | error | degraded
        Phase            foundation | group_a | group_b | group_c | synthesis | execution
        PhaseLayout      ordered stages, each a frozenset of phases
        UnitDescriptor   id, name, phase, priority, dependencies, tags, enabled
        UnitStatus       observable snapshot of one wrapper

Invariants:
    - ``0 <= confidence <= 1``
    - ``success=False`` implies ``confidence == 0`` unless ``degraded``

Tags:
    models, report, dataclass, tilespine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import copy
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class Signal(str, Enum):
    """Directional tag attached to a report."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class UnitState(str, Enum):
    """Lifecycle state of a unit's wrapper."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    DEGRADED = "degraded"


class Phase(str, Enum):
    """Named stage a unit belongs to."""

    FOUNDATION = "foundation"
    GROUP_A = "group_a"
    GROUP_B = "group_b"
    GROUP_C = "group_c"
    SYNTHESIS = "synthesis"
    EXECUTION = "execution"


PhaseLayout = tuple[frozenset[Phase], ...]

# foundation → three parallel groups → synthesis → execution
DEFAULT_LAYOUT: PhaseLayout = (
    frozenset({Phase.FOUNDATION}),
    frozenset({Phase.GROUP_A, Phase.GROUP_B, Phase.GROUP_C}),
    frozenset({Phase.SYNTHESIS}),
    frozenset({Phase.EXECUTION}),
)


def sequential_layout(phases: Iterable[Phase] | None = None) -> PhaseLayout:
    """One phase per stage, in the given (or declaration) order."""
    return tuple(frozenset({phase}) for phase in (phases or list(Phase)))


@dataclass(frozen=True)
class Report(Generic[T]):
    """Immutable result of one unit execution.

    Attributes:
        success: Whether the report carries a usable result
        confidence: Signal strength in [0, 1]
        signal: Directional tag
        data: Unit-specific payload
        errors: Failure messages, in the order they occurred
        timestamp: When the report was produced (UTC)
        degraded: Synthesised from stale data after real computation failed
        degraded_reason: Why the report is degraded
        stale_since: Timestamp of the last good report the data came from
        unit_id: Unit that produced the report (set by the wrapper)
        duration_ms: Wall time of the execution that produced it
    """

    success: bool
    confidence: float = 0.0
    signal: Signal = Signal.NEUTRAL
    data: T | None = None
    errors: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=utcnow)
    degraded: bool = False
    degraded_reason: str | None = None
    stale_since: datetime | None = None
    unit_id: str | None = None
    duration_ms: float | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        if not self.success and not self.degraded and self.confidence != 0.0:
            raise ValueError("a failed report must have confidence 0")
        if not isinstance(self.errors, tuple):
            object.__setattr__(self, "errors", tuple(self.errors))
        if not isinstance(self.signal, Signal):
            object.__setattr__(self, "signal", Signal(self.signal))

    @classmethod
    def ok(
        cls,
        data: T | None = None,
        *,
        confidence: float = 1.0,
        signal: Signal | str = Signal.NEUTRAL,
    ) -> Report[T]:
        """Build a successful report."""
        return cls(success=True, confidence=confidence, signal=Signal(signal), data=data)

    @classmethod
    def failure(cls, *messages: str, data: T | None = None) -> Report[T]:
        """Build a hard error report (``success=False``, ``confidence=0``)."""
        return cls(success=False, confidence=0.0, signal=Signal.NEUTRAL, data=data, errors=tuple(messages))

    @classmethod
    def degraded_from(
        cls,
        last_good: Report[T] | None,
        reason: str,
        *,
        damping: float,
        floor: float,
        errors: Iterable[str] = (),
    ) -> Report[T]:
        """Synthesise a degraded report from the last good one.

        The payload is a deep copy of the prior payload; confidence is
        damped so it stays strictly below the prior confidence.
        """
        if last_good is None or last_good.confidence <= 0.0:
            return cls(
                success=True,
                confidence=floor,
                signal=Signal.NEUTRAL,
                data=None,
                errors=tuple(errors),
                degraded=True,
                degraded_reason=reason,
            )

        scaled = last_good.confidence * damping
        confidence = max(floor, scaled)
        if confidence >= last_good.confidence:
            confidence = scaled

        return cls(
            success=True,
            confidence=confidence,
            signal=last_good.signal,
            data=copy.deepcopy(last_good.data),
            errors=tuple(errors),
            degraded=True,
            degraded_reason=reason,
            stale_since=last_good.stale_since or last_good.timestamp,
        )

    def stamped(self, *, unit_id: str, duration_ms: float | None = None) -> Report[T]:
        """Return a copy labelled with the producing unit and its duration."""
        return replace(self, unit_id=unit_id, duration_ms=duration_ms)

    @property
    def state(self) -> UnitState:
        """Terminal state this report represents."""
        if self.degraded:
            return UnitState.DEGRADED
        return UnitState.SUCCESS if self.success else UnitState.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/CLI output."""
        return {
            "unit_id": self.unit_id,
            "success": self.success,
            "confidence": self.confidence,
            "signal": self.signal.value,
            "data": self.data,
            "errors": list(self.errors),
            "timestamp": self.timestamp.isoformat(),
            "degraded": self.degraded,
            "degraded_reason": self.degraded_reason,
            "stale_since": self.stale_since.isoformat() if self.stale_since else None,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class UnitDescriptor:
    """Registration metadata for one unit.

    ``priority`` is lower-first; ties are broken by ``id``.
    """

    id: str
    phase: Phase
    name: str = ""
    priority: int = 100
    dependencies: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()
    enabled: bool = True
    description: str | None = None
    estimated_duration_ms: float = 5000.0

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("unit id must be non-empty")
        if not isinstance(self.phase, Phase):
            object.__setattr__(self, "phase", Phase(self.phase))
        if not isinstance(self.dependencies, frozenset):
            object.__setattr__(self, "dependencies", frozenset(self.dependencies))
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags))
        if not self.name:
            object.__setattr__(self, "name", self.id)

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.id)


@dataclass(frozen=True)
class UnitStatus:
    """Snapshot of a wrapper's state, safe to hand to callers."""

    unit_id: str
    state: UnitState
    last_report: Report | None = None
    last_good: Report | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    last_success: datetime | None = None
    last_duration_ms: float | None = None
    executions: int = 0
    cache_hits: int = 0
    circuit_state: str = "closed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "state": self.state.value,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_duration_ms": self.last_duration_ms,
            "executions": self.executions,
            "cache_hits": self.cache_hits,
            "circuit_state": self.circuit_state,
        }


__all__ = [
    "DEFAULT_LAYOUT",
    "Phase",
    "PhaseLayout",
    "Report",
    "Signal",
    "UnitDescriptor",
    "UnitState",
    "UnitStatus",
    "sequential_layout",
    "utcnow",
]
