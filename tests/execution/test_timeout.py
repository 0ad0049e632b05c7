"""Tests for timeout enforcement and deadlines."""

import asyncio
import time

import pytest

from tests._support.engines import FakeClock
from tilespine.core.errors import UnitTimeout
from tilespine.execution.timeout import Deadline, as_sync, run_with_timeout


class TestDeadline:
    """Tests for Deadline."""

    def test_after(self, clock: FakeClock):
        """Test a deadline measured from now."""
        deadline = Deadline.after(2.0, clock=clock)
        assert deadline.remaining() == pytest.approx(2.0)
        assert not deadline.is_expired()

        clock.advance(2.0)
        assert deadline.is_expired()
        assert deadline.remaining() == pytest.approx(0.0)

    def test_non_positive_rejected(self):
        """Test a deadline must be in the future."""
        with pytest.raises(ValueError):
            Deadline.after(0)

    def test_cap(self, clock: FakeClock):
        """Test cap() shortens timeouts to the remaining time."""
        deadline = Deadline.after(1.0, clock=clock)
        assert deadline.cap(5.0) == pytest.approx(1.0)
        assert deadline.cap(0.25) == pytest.approx(0.25)
        clock.advance(3.0)
        assert deadline.cap(5.0) == 0.0


class TestAsSync:
    """Tests for coroutine adaptation."""

    def test_plain_function_unchanged(self):
        def compute():
            return 1

        assert as_sync(compute) is compute

    def test_coroutine_function_driven(self):
        """Test a coroutine function is run to completion."""

        async def compute():
            await asyncio.sleep(0)
            return 42

        assert as_sync(compute)() == 42


class TestRunWithTimeout:
    """Tests for run_with_timeout."""

    def test_returns_result(self):
        assert run_with_timeout(lambda: "ok", 1.0) == "ok"

    def test_propagates_exception(self):
        """Test exceptions from the callable surface unchanged."""

        def boom():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_with_timeout(boom, 1.0)

    def test_own_timeout_error_is_not_a_unit_timeout(self):
        """Test a TimeoutError raised by the callable is re-raised as-is."""

        def raises_timeout():
            raise TimeoutError("socket")

        with pytest.raises(TimeoutError) as exc_info:
            run_with_timeout(raises_timeout, 1.0)
        assert not isinstance(exc_info.value, UnitTimeout)

    def test_times_out_without_waiting_for_worker(self):
        """Test the caller returns at the timeout, not when the worker ends."""
        start = time.monotonic()
        with pytest.raises(UnitTimeout) as exc_info:
            run_with_timeout(lambda: time.sleep(0.5), 0.05)
        elapsed = time.monotonic() - start

        assert str(exc_info.value) == "timeout"
        assert exc_info.value.timeout_seconds == 0.05
        assert elapsed < 0.4

    def test_async_callable(self):
        """Test coroutine functions are supported and timed out."""

        async def slow():
            await asyncio.sleep(0.5)

        with pytest.raises(UnitTimeout):
            run_with_timeout(slow, 0.05)

    def test_zero_timeout_fails_immediately(self):
        calls = []
        with pytest.raises(UnitTimeout):
            run_with_timeout(lambda: calls.append(1), 0)
        assert calls == []
