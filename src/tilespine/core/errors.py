"""
Structured error types for tilespine.

Errors carry a category, a retryable flag, structured context and an
optional chained cause, so that the resilience layer can decide whether
to retry and the logging layer can emit something useful.

Manifesto:
    - **Typed hierarchy:** Different error types for different failure modes
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Contained failures:** Per-unit failures live inside Reports; only
      structural errors (cycles, phase ordering, bad config, unknown ids)
      ever reach the caller as exceptions

Architecture:
    ::

        TilespineError  (category, retryable, context, cause)
          ├── ConfigurationError      CONFIG         never retryable
          ├── ComputeFailure          COMPUTE        retryable
          │     └── UnitTimeout       TIMEOUT        retryable
          └── OrchestrationError      ORCHESTRATION
                └── (see tilespine.orchestration.exceptions)

Examples:
    >>> error = ComputeFailure("upstream returned 500")
    >>> error.retryable
    True
    >>> error.with_context(unit_id="net_liquidity").context.unit_id
    'net_liquidity'

Tags:
    error-handling, exception-hierarchy, retry-logic, tilespine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    COMPUTE = "COMPUTE"              # Unit compute raised or reported failure
    TIMEOUT = "TIMEOUT"              # Attempt or run deadline elapsed
    CONFIG = "CONFIG"                # Invalid configuration values
    ORCHESTRATION = "ORCHESTRATION"  # Registry / plan / scheduler errors
    INTERNAL = "INTERNAL"            # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Where an error happened: unit, phase and run, plus free-form extras."""

    unit_id: str | None = None
    phase: str | None = None
    run_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Set fields plus metadata, flattened for log records."""
        ids = {"unit_id": self.unit_id, "phase": self.phase, "run_id": self.run_id}
        return {**{k: v for k, v in ids.items() if v is not None}, **self.metadata}


class TilespineError(Exception):
    """
    Root of the tilespine exception tree.

    ``default_category`` and ``default_retryable`` are overridden per
    subclass; both can still be forced per instance.

    Examples:
        >>> error = TilespineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.to_dict()["retryable"]
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.context = context if context is not None else ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TilespineError:
        """Attach context and return ``self``, for ``raise X(...).with_context(...)``.

        Keys that are not ``ErrorContext`` fields go to ``metadata``.
        """
        known = {f.name for f in fields(ErrorContext)} - {"metadata"}
        for key, value in kwargs.items():
            if key in known:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialise for structured logs and CLI error output."""
        data: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if context := self.context.to_dict():
            data["context"] = context
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value}, retryable={self.retryable})"


class ConfigurationError(TilespineError):
    """A configuration value is out of range or inconsistent."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, message: str, field: str | None = None, **kwargs: Any):
        self.field = field
        super().__init__(message, **kwargs)


class ComputeFailure(TilespineError):
    """A unit's compute raised, or returned a ``success=False`` report.

    ``soft`` distinguishes a reported failure from a raised exception.
    """

    default_category = ErrorCategory.COMPUTE
    default_retryable = True

    def __init__(self, message: str, *, soft: bool = False, **kwargs: Any):
        self.soft = soft
        super().__init__(message, **kwargs)


class UnitTimeout(ComputeFailure):
    """An attempt exceeded its deadline. Retried like any other compute failure."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, message: str = "timeout", *, timeout_seconds: float | None = None, **kwargs: Any):
        self.timeout_seconds = timeout_seconds
        super().__init__(message, **kwargs)


class OrchestrationError(TilespineError):
    """Registry, planning or scheduling error."""

    default_category = ErrorCategory.ORCHESTRATION


def is_retryable(error: BaseException) -> bool:
    """Check whether an arbitrary exception should be retried.

    Plain exceptions raised from unit code are treated as compute
    failures and are retryable; tilespine errors carry their own flag.
    """
    if isinstance(error, TilespineError):
        return error.retryable
    return isinstance(error, Exception)


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "TilespineError",
    "ConfigurationError",
    "ComputeFailure",
    "UnitTimeout",
    "OrchestrationError",
    "is_retryable",
]
