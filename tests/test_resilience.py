#!/usr/bin/env python3
"""
Resilience Engine Tests

Tests for:
- Retry policy backoff schedule
- Circuit breaker transitions (CLOSED / OPEN / HALF_OPEN)
- with_retry and with_circuit_breaker behaviour
- Error history recording
"""

import pytest
import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.errors import (
    CircuitOpenError,
    ErrorKind,
    RemoteError,
    RetryExhaustedError,
    ValidationError,
)
from backend.resilience import (
    CircuitBreaker,
    CircuitConfig,
    CircuitState,
    ResilienceEngine,
    RetryPolicy,
    get_resilience_engine,
)
from config import settings


class CallCounter:
    """Operation that fails a set number of times before succeeding"""

    def __init__(self, failures: int = 0, error: Exception = None, result="done"):
        self.calls = 0
        self.failures = failures
        self.error = error or RemoteError(503)
        self.result = result

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


# ============================================================================
# RETRY POLICY TESTS
# ============================================================================

class TestRetryPolicy:
    """Tests for RetryPolicy"""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.max_delay == 10.0
        assert policy.backoff_multiplier == 2.0

    def test_delay_schedule_is_capped(self):
        policy = RetryPolicy(max_attempts=6)
        assert [policy.delay(i) for i in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValidationError):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValidationError):
            RetryPolicy(base_delay=-1.0)

    def test_rejects_shrinking_backoff(self):
        with pytest.raises(ValidationError):
            RetryPolicy(backoff_multiplier=0.5)


# ============================================================================
# CIRCUIT BREAKER TESTS
# ============================================================================

class TestCircuitBreaker:
    """Tests for CircuitBreaker state machine"""

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker(CircuitConfig(), clock=clock)

    def test_unknown_key_starts_closed(self, breaker):
        assert breaker.get_state("remote.speak") == CircuitState.CLOSED

    def test_opens_exactly_on_threshold(self, breaker):
        for _ in range(4):
            breaker.record_failure("k")
            assert breaker.get_state("k") == CircuitState.CLOSED
        breaker.record_failure("k")
        assert breaker.get_state("k") == CircuitState.OPEN

    def test_success_resets_failure_count(self, breaker):
        for _ in range(4):
            breaker.record_failure("k")
        breaker.record_success("k")
        for _ in range(4):
            breaker.record_failure("k")
        assert breaker.get_state("k") == CircuitState.CLOSED

    def test_half_open_after_cooldown(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure("k")

        clock.advance(59.9)
        assert breaker.get_state("k") == CircuitState.OPEN

        clock.advance(0.1)
        assert breaker.get_state("k") == CircuitState.HALF_OPEN

    def test_half_open_closes_after_success_threshold(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure("k")
        clock.advance(60)

        breaker.record_success("k")
        assert breaker.get_state("k") == CircuitState.HALF_OPEN
        breaker.record_success("k")
        assert breaker.get_state("k") == CircuitState.CLOSED

        record = breaker.get_record("k")
        assert record.consecutive_failures == 0
        assert record.consecutive_successes == 0

    def test_half_open_reopens_on_single_failure(self, breaker, clock):
        for _ in range(5):
            breaker.record_failure("k")
        clock.advance(60)
        breaker.record_success("k")

        breaker.record_failure("k")
        assert breaker.get_state("k") == CircuitState.OPEN

        # Cooldown restarts from the new failure
        clock.advance(30)
        assert breaker.get_state("k") == CircuitState.OPEN

    def test_keys_are_independent(self, breaker):
        for _ in range(5):
            breaker.record_failure("remote.speak")
        assert breaker.is_open("remote.speak")
        assert not breaker.is_open("remote.sentence")

    def test_configure_overrides_thresholds(self, breaker):
        breaker.configure("fragile", CircuitConfig(failure_threshold=1))
        breaker.record_failure("fragile")
        assert breaker.is_open("fragile")

    def test_reset(self, breaker):
        for _ in range(5):
            breaker.record_failure("k")
        breaker.reset("k")
        assert breaker.get_state("k") == CircuitState.CLOSED

    def test_snapshot(self, breaker):
        breaker.record_failure("k")
        snapshot = breaker.snapshot()
        assert snapshot["k"]["state"] == "closed"
        assert snapshot["k"]["consecutive_failures"] == 1
        assert snapshot["k"]["total_failures"] == 1


# ============================================================================
# WITH_RETRY TESTS
# ============================================================================

class TestWithRetry:
    """Tests for ResilienceEngine.with_retry"""

    async def test_returns_first_success(self, engine, sleeps):
        op = CallCounter()
        assert await engine.with_retry(op) == "done"
        assert op.calls == 1
        assert sleeps.delays == []

    async def test_recovers_after_failures(self, engine, sleeps):
        op = CallCounter(failures=2)
        assert await engine.with_retry(op) == "done"
        assert op.calls == 3
        assert sleeps.delays == [1.0, 2.0]

    async def test_exhaustion_after_three_invocations(self, engine, error_handler):
        op = CallCounter(failures=10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await engine.with_retry(op)

        assert op.calls == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, RemoteError)
        assert exc_info.value.__cause__ is exc_info.value.last_error
        assert error_handler.get_history()[0].kind == ErrorKind.REMOTE

    async def test_backoff_sequence(self, engine, sleeps):
        op = CallCounter(failures=10)

        with pytest.raises(RetryExhaustedError):
            await engine.with_retry(op, policy=RetryPolicy(max_attempts=6))

        assert sleeps.delays == [1.0, 2.0, 4.0, 8.0, 10.0]

    async def test_validation_error_is_not_retried(self, engine):
        op = CallCounter(failures=10, error=ValidationError("bad input"))

        with pytest.raises(ValidationError):
            await engine.with_retry(op, circuit_key="k")

        assert op.calls == 1
        assert engine.circuit_breaker.get_record("k").consecutive_failures == 0

    async def test_failures_are_recorded_against_circuit(self, engine):
        op = CallCounter(failures=10)

        with pytest.raises(RetryExhaustedError):
            await engine.with_retry(op, circuit_key="k")

        assert engine.circuit_breaker.get_record("k").consecutive_failures == 3

    async def test_first_attempt_runs_even_when_open(self, engine):
        for _ in range(5):
            engine.circuit_breaker.record_failure("k")

        op = CallCounter()
        assert await engine.with_retry(op, circuit_key="k") == "done"
        assert op.calls == 1

    async def test_open_circuit_stops_retries(self, engine):
        for _ in range(4):
            engine.circuit_breaker.record_failure("k")
        op = CallCounter(failures=10)

        with pytest.raises(CircuitOpenError) as exc_info:
            await engine.with_retry(op, circuit_key="k")

        # Fifth failure opens the circuit; the second attempt is refused
        assert op.calls == 1
        assert exc_info.value.circuit_key == "k"

    async def test_success_closes_half_open_circuit(self, engine, clock):
        for _ in range(5):
            engine.circuit_breaker.record_failure("k")
        clock.advance(60)

        await engine.with_retry(CallCounter(), circuit_key="k")
        await engine.with_retry(CallCounter(), circuit_key="k")

        assert engine.get_circuit_state("k") == CircuitState.CLOSED

    async def test_circuit_config_override(self, engine):
        op = CallCounter(failures=10)

        with pytest.raises(CircuitOpenError):
            await engine.with_retry(
                op, circuit_key="k", circuit_config=CircuitConfig(failure_threshold=2)
            )

        assert op.calls == 2


# ============================================================================
# WITH_CIRCUIT_BREAKER TESTS
# ============================================================================

class TestWithCircuitBreaker:
    """Tests for ResilienceEngine.with_circuit_breaker"""

    async def test_error_propagates_unwrapped(self, engine):
        op = CallCounter(failures=1)

        with pytest.raises(RemoteError):
            await engine.with_circuit_breaker("k", op)

        assert op.calls == 1

    async def test_open_circuit_never_invokes_operation(self, engine):
        failing = CallCounter(failures=10)
        for _ in range(5):
            with pytest.raises(RemoteError):
                await engine.with_circuit_breaker("k", failing)

        assert engine.get_circuit_state("k") == CircuitState.OPEN

        op = CallCounter()
        for _ in range(3):
            with pytest.raises(CircuitOpenError):
                await engine.with_circuit_breaker("k", op)
        assert op.calls == 0

    async def test_half_open_probe_runs_operation(self, engine, clock):
        for _ in range(5):
            engine.circuit_breaker.record_failure("k")
        clock.advance(60)

        op = CallCounter()
        assert await engine.with_circuit_breaker("k", op) == "done"
        assert op.calls == 1
        assert engine.get_circuit_state("k") == CircuitState.HALF_OPEN

    async def test_half_open_failure_reopens(self, engine, clock):
        for _ in range(5):
            engine.circuit_breaker.record_failure("k")
        clock.advance(60)

        with pytest.raises(RemoteError):
            await engine.with_circuit_breaker("k", CallCounter(failures=1))

        assert engine.get_circuit_state("k") == CircuitState.OPEN

    async def test_rejection_is_recorded(self, engine, error_handler):
        for _ in range(5):
            engine.circuit_breaker.record_failure("k")

        with pytest.raises(CircuitOpenError):
            await engine.with_circuit_breaker("k", CallCounter())

        latest = error_handler.get_history(limit=1)[0]
        assert latest.kind == ErrorKind.CIRCUIT_OPEN
        assert latest.context == "k"


# ============================================================================
# CANCELLATION TESTS
# ============================================================================

class TestCancellation:
    """Tests that cancellation is never retried or recorded"""

    async def test_cancelled_operation_is_not_retried(self, engine, sleeps):
        started = asyncio.Event()
        calls = []

        async def hang():
            calls.append(1)
            started.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(
            engine.with_retry(hang, policy=RetryPolicy(max_attempts=3), circuit_key="k")
        )
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(calls) == 1
        assert sleeps.delays == []
        assert engine.circuit_breaker.get_record("k").consecutive_failures == 0

    async def test_cancelled_error_raised_by_operation_propagates(self, engine, error_handler):
        op = CallCounter(failures=10, error=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await engine.with_retry(op)

        assert op.calls == 1
        assert error_handler.history_size == 0


# ============================================================================
# ENGINE STATUS TESTS
# ============================================================================

class TestEngineStatus:
    """Tests for reset, status and the application engine"""

    async def test_reset_clears_circuits_and_history(self, engine, error_handler):
        with pytest.raises(RetryExhaustedError):
            await engine.with_retry(CallCounter(failures=10), circuit_key="k")

        engine.reset()

        assert engine.circuit_breaker.snapshot() == {}
        assert error_handler.history_size == 0

    async def test_status_lists_circuits_and_errors(self, engine):
        with pytest.raises(RetryExhaustedError):
            await engine.with_retry(CallCounter(failures=10), circuit_key="k")

        status = engine.get_status()
        assert status["circuits"]["k"]["total_failures"] == 3
        assert status["recent_errors"][0]["kind"] == "remote"

    def test_application_engine_uses_settings(self):
        app_engine = get_resilience_engine()

        assert app_engine is get_resilience_engine()
        assert app_engine.retry_policy.max_attempts == settings.RETRY_MAX_ATTEMPTS
        assert app_engine.circuit_breaker.config.failure_threshold == settings.CIRCUIT_FAILURE_THRESHOLD
        assert isinstance(app_engine, ResilienceEngine)
