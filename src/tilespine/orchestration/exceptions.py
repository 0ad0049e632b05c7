"""Orchestration exceptions.

All orchestration exceptions inherit from ``tilespine.core.errors.OrchestrationError``
so that callers can catch the entire family with a single ``except`` clause.

Hierarchy::

    OrchestrationError  (from tilespine.core.errors)
      ├── RegistrationError          ── a unit cannot be registered
      │     ├── CycleDetectedError     ── registration would close a dependency cycle
      │     └── PhaseOrderError        ── a dependency is not in an earlier stage
      └── UnknownUnitError           ── no unit with that id is registered
"""

from __future__ import annotations

from tilespine.core.errors import OrchestrationError


class RegistrationError(OrchestrationError):
    """Base exception for rejected registrations. Nothing is committed."""

    def __init__(self, message: str, unit_id: str | None = None):
        self.unit_id = unit_id
        super().__init__(message)
        if unit_id is not None:
            self.context.unit_id = unit_id


class CycleDetectedError(RegistrationError):
    """Raised when a registration would make the dependency graph cyclic."""

    def __init__(self, cycle: list[str], unit_id: str | None = None):
        self.cycle = cycle
        cycle_str = " -> ".join(cycle)
        super().__init__(f"Cycle detected in dependency graph: {cycle_str}", unit_id=unit_id)


class PhaseOrderError(RegistrationError):
    """Raised when a unit depends on a unit in the same or a later stage,
    or when its phase is not part of the registry's layout."""

    def __init__(
        self,
        unit_id: str,
        dependency_id: str | None,
        unit_phase: str,
        dependency_phase: str | None,
        message: str | None = None,
    ):
        self.dependency_id = dependency_id
        self.unit_phase = unit_phase
        self.dependency_phase = dependency_phase
        super().__init__(
            message
            or f"Unit '{unit_id}' ({unit_phase}) cannot depend on '{dependency_id}' "
            f"({dependency_phase}): dependencies must run in an earlier stage",
            unit_id=unit_id,
        )

    @classmethod
    def outside_layout(cls, unit_id: str, phase: str) -> PhaseOrderError:
        return cls(
            unit_id,
            None,
            phase,
            None,
            message=f"Unit '{unit_id}' is in phase '{phase}', which is not part of the phase layout",
        )


class UnknownUnitError(OrchestrationError):
    """Raised when a requested unit is not registered."""

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"Unit not found: {unit_id}")
        self.context.unit_id = unit_id
