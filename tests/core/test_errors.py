"""Tests for the structured error hierarchy."""

import pytest

from tilespine.core.errors import (
    ComputeFailure,
    ConfigurationError,
    ErrorCategory,
    OrchestrationError,
    TilespineError,
    UnitTimeout,
    is_retryable,
)
from tilespine.orchestration.exceptions import (
    CycleDetectedError,
    PhaseOrderError,
    RegistrationError,
    UnknownUnitError,
)


class TestTilespineError:
    """Tests for the base error."""

    def test_defaults(self):
        """Test default category and retry flag."""
        error = TilespineError("boom")
        assert error.message == "boom"
        assert error.category == ErrorCategory.INTERNAL
        assert error.retryable is False

    def test_with_context_sets_known_fields_and_metadata(self):
        """Test fluent context for known keys and free-form metadata."""
        error = ComputeFailure("upstream 500").with_context(unit_id="credit", attempt=2)
        assert error.context.unit_id == "credit"
        assert error.context.metadata == {"attempt": 2}

    def test_to_dict(self):
        """Test serialization includes context and cause."""
        cause = ValueError("bad")
        error = TilespineError("wrapped", cause=cause).with_context(run_id="r1")
        data = error.to_dict()
        assert data["error_type"] == "TilespineError"
        assert data["context"] == {"run_id": "r1"}
        assert data["cause"] == "bad"
        assert error.__cause__ is cause


class TestErrorTypes:
    """Tests for concrete error types."""

    def test_compute_failure_is_retryable(self):
        """Test compute failures default to retryable."""
        error = ComputeFailure("x", soft=True)
        assert error.retryable is True
        assert error.soft is True
        assert error.category == ErrorCategory.COMPUTE

    def test_timeout_message(self):
        """Test timeouts carry the canonical message."""
        error = UnitTimeout(timeout_seconds=0.05)
        assert str(error) == "timeout"
        assert error.timeout_seconds == 0.05
        assert error.category == ErrorCategory.TIMEOUT
        assert isinstance(error, ComputeFailure)

    def test_configuration_error_field(self):
        """Test configuration errors name the offending field."""
        error = ConfigurationError("bad", field="timeout_ms")
        assert error.field == "timeout_ms"
        assert error.retryable is False

    def test_orchestration_family(self):
        """Test every orchestration error is catchable as OrchestrationError."""
        assert issubclass(RegistrationError, OrchestrationError)
        assert issubclass(CycleDetectedError, RegistrationError)
        assert issubclass(PhaseOrderError, RegistrationError)
        assert issubclass(UnknownUnitError, OrchestrationError)

    def test_cycle_error_names_cycle(self):
        """Test the cycle error message lists every id."""
        error = CycleDetectedError(["a", "b", "c", "a"], unit_id="c")
        assert error.cycle == ["a", "b", "c", "a"]
        assert "a -> b -> c -> a" in str(error)
        assert error.context.unit_id == "c"

    def test_phase_order_error_message(self):
        """Test the phase order message names both units and phases."""
        error = PhaseOrderError("late", "early", "foundation", "synthesis")
        assert "late" in str(error) and "early" in str(error)
        assert error.dependency_phase == "synthesis"

    def test_unknown_unit(self):
        """Test unknown unit errors carry the id."""
        error = UnknownUnitError("ghost")
        assert error.unit_id == "ghost"
        assert "ghost" in str(error)


class TestIsRetryable:
    """Tests for is_retryable()."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (ValueError("x"), True),
            (ComputeFailure("x"), True),
            (UnitTimeout(), True),
            (ConfigurationError("x"), False),
            (TilespineError("x", retryable=True), True),
            (KeyboardInterrupt(), False),
        ],
    )
    def test_classification(self, error, expected):
        """Test retry classification of plain and typed errors."""
        assert is_retryable(error) is expected
