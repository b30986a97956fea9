"""
Resilience Engine

Generic fault tolerance for async operations:
- Retry with capped exponential backoff
- Per-key circuit breaker (CLOSED / OPEN / HALF_OPEN)
- Error classification into a bounded diagnostic history

Nothing in here knows about speech or HTTP. Callers pass a zero-argument
coroutine factory and, optionally, a circuit key naming the dependency
the operation talks to.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
)

from .errors import (
    CircuitOpenError,
    ErrorHandler,
    ErrorSeverity,
    NON_RETRYABLE_ERRORS,
    RetryExhaustedError,
    ValidationError,
    extract_error_message,
)

from utils.logger import logger

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Dependency failing, reject requests
    HALF_OPEN = "half_open"  # Testing if dependency recovered


@dataclass(frozen=True)
class RetryPolicy:
    """Retry attempts and backoff schedule (delays in seconds)"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValidationError("Retry delays cannot be negative")
        if self.backoff_multiplier < 1:
            raise ValidationError("backoff_multiplier must be >= 1")

    def delay(self, attempt: int) -> float:
        """Delay after the failed attempt with zero-based index `attempt`"""
        return min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)


@dataclass(frozen=True)
class CircuitConfig:
    """Circuit breaker thresholds (cooldown in seconds)"""
    failure_threshold: int = 5
    success_threshold: int = 2
    cooldown_timeout: float = 60.0

    def __post_init__(self):
        if self.failure_threshold < 1 or self.success_threshold < 1:
            raise ValidationError("Circuit thresholds must be at least 1")
        if self.cooldown_timeout < 0:
            raise ValidationError("cooldown_timeout cannot be negative")


@dataclass
class CircuitRecord:
    """Mutable state of one circuit"""
    key: str
    config: CircuitConfig
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_failure_time: Optional[float] = None
    total_failures: int = 0
    total_successes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "last_failure_time": self.last_failure_time,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "failure_threshold": self.config.failure_threshold,
        }


class CircuitBreaker:
    """
    Per-key circuit breaker.

    Records are created lazily on first use. The OPEN -> HALF_OPEN
    transition happens when the circuit is queried after the cooldown,
    there is no background timer.
    """

    def __init__(
        self,
        config: Optional[CircuitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitConfig()
        self._clock = clock
        self._records: Dict[str, CircuitRecord] = {}

    def configure(self, key: str, config: CircuitConfig) -> None:
        """Override thresholds for a single circuit"""
        self.get_record(key).config = config

    def get_record(self, key: str) -> CircuitRecord:
        record = self._records.get(key)
        if record is None:
            record = CircuitRecord(key=key, config=self.config)
            self._records[key] = record
        return record

    def get_state(self, key: str) -> CircuitState:
        """Get current state, moving OPEN to HALF_OPEN once the cooldown elapsed"""
        record = self.get_record(key)

        if record.state == CircuitState.OPEN and record.last_failure_time is not None:
            elapsed = self._clock() - record.last_failure_time
            if elapsed >= record.config.cooldown_timeout:
                record.state = CircuitState.HALF_OPEN
                record.consecutive_successes = 0
                logger.info(f"Circuit for {key} transitioning to HALF_OPEN")

        return record.state

    def is_open(self, key: str) -> bool:
        return self.get_state(key) == CircuitState.OPEN

    def record_success(self, key: str) -> None:
        """Record a successful call"""
        record = self.get_record(key)
        state = self.get_state(key)
        record.total_successes += 1

        if state == CircuitState.HALF_OPEN:
            record.consecutive_successes += 1
            if record.consecutive_successes >= record.config.success_threshold:
                record.state = CircuitState.CLOSED
                record.consecutive_failures = 0
                record.consecutive_successes = 0
                logger.info(f"Circuit for {key} CLOSED after recovery")

        elif state == CircuitState.CLOSED:
            record.consecutive_failures = 0

    def record_failure(self, key: str) -> None:
        """Record a failed call"""
        record = self.get_record(key)
        state = self.get_state(key)

        record.consecutive_failures += 1
        record.consecutive_successes = 0
        record.total_failures += 1
        record.last_failure_time = self._clock()

        if state == CircuitState.HALF_OPEN:
            record.state = CircuitState.OPEN
            logger.warning(f"Circuit for {key} reopened after HALF_OPEN failure")

        elif state == CircuitState.CLOSED:
            if record.consecutive_failures >= record.config.failure_threshold:
                record.state = CircuitState.OPEN
                logger.warning(
                    f"Circuit for {key} OPENED after {record.consecutive_failures} failures"
                )

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one circuit, or all of them"""
        if key is None:
            self._records.clear()
        else:
            self._records.pop(key, None)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Get state of every known circuit"""
        return {
            key: dict(record.to_dict(), state=self.get_state(key).value)
            for key, record in list(self._records.items())
        }


class ResilienceEngine:
    """
    Retry and circuit breaker front door.

    Construct one per application (or per test). Overlapping calls that
    share a circuit key update the same record, so the circuit reflects
    aggregate dependency health rather than a single call's attempts.
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        circuit_config: Optional[CircuitConfig] = None,
        error_handler: Optional[ErrorHandler] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.circuit_breaker = CircuitBreaker(config=circuit_config, clock=clock)
        self.error_handler = error_handler or ErrorHandler()
        self._sleep = sleep

    async def with_retry(
        self,
        operation: Operation,
        policy: Optional[RetryPolicy] = None,
        circuit_key: Optional[str] = None,
        circuit_config: Optional[CircuitConfig] = None,
    ) -> Any:
        """
        Run an operation with retry and optional circuit protection.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            policy: Retry policy for this call (engine default otherwise)
            circuit_key: Circuit to record outcomes against
            circuit_config: Threshold override for that circuit

        Returns:
            The operation's result

        Raises:
            CircuitOpenError: The circuit was open before a retry attempt
            RetryExhaustedError: Every attempt failed (wraps the last error)
        """
        policy = policy or self.retry_policy
        if circuit_key is not None and circuit_config is not None:
            self.circuit_breaker.configure(circuit_key, circuit_config)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=lambda retry_state: policy.delay(retry_state.attempt_number - 1),
            # Cancellation and other BaseExceptions pass through untouched
            retry=(
                retry_if_exception_type(Exception)
                & retry_if_not_exception_type(NON_RETRYABLE_ERRORS)
            ),
            sleep=self._sleep,
            before_sleep=lambda retry_state: self._log_retry(retry_state, policy, circuit_key),
            reraise=False,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    if circuit_key is not None and attempt.retry_state.attempt_number > 1:
                        self._ensure_closed(circuit_key)
                    return await self._run_recorded(operation, circuit_key)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            self.error_handler.handle_error(
                last_error,
                context=circuit_key or "with_retry",
                severity=ErrorSeverity.HIGH,
                metadata={"attempts": policy.max_attempts},
            )
            raise RetryExhaustedError(policy.max_attempts, last_error) from last_error

    async def with_circuit_breaker(
        self,
        circuit_key: str,
        operation: Operation,
        circuit_config: Optional[CircuitConfig] = None,
    ) -> Any:
        """
        Run an operation once behind a circuit breaker.

        Raises:
            CircuitOpenError: The circuit is open; the operation is not invoked
            Exception: Whatever the operation raised, unwrapped
        """
        if circuit_config is not None:
            self.circuit_breaker.configure(circuit_key, circuit_config)

        self._ensure_closed(circuit_key)
        return await self._run_recorded(operation, circuit_key)

    async def _run_recorded(self, operation: Operation, circuit_key: Optional[str]) -> Any:
        try:
            result = await operation()
        except NON_RETRYABLE_ERRORS:
            raise
        except Exception:
            if circuit_key is not None:
                self.circuit_breaker.record_failure(circuit_key)
            raise

        if circuit_key is not None:
            self.circuit_breaker.record_success(circuit_key)
        return result

    def _ensure_closed(self, circuit_key: str) -> None:
        if self.circuit_breaker.is_open(circuit_key):
            error = CircuitOpenError(circuit_key)
            self.error_handler.handle_error(error, context=circuit_key, severity=ErrorSeverity.LOW)
            raise error

    @staticmethod
    def _log_retry(
        retry_state: RetryCallState,
        policy: RetryPolicy,
        circuit_key: Optional[str],
    ) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retry attempt {retry_state.attempt_number}/{policy.max_attempts} "
            f"after {delay:.2f}s"
            + (f" [{circuit_key}]" if circuit_key else "")
            + f": {extract_error_message(error)}"
        )

    def get_circuit_state(self, circuit_key: str) -> CircuitState:
        return self.circuit_breaker.get_state(circuit_key)

    def reset(self) -> None:
        """Clear every circuit and the error history"""
        self.circuit_breaker.reset()
        self.error_handler.clear_history()

    def get_status(self) -> Dict[str, Any]:
        """Get circuit states and recent errors for diagnostics"""
        return {
            "circuits": self.circuit_breaker.snapshot(),
            "recent_errors": [e.to_dict() for e in self.error_handler.get_history(limit=10)],
        }


# Application-wide instance
_engine: Optional[ResilienceEngine] = None


def get_resilience_engine() -> ResilienceEngine:
    """Get or create the application resilience engine"""
    global _engine
    if _engine is None:
        from config import settings

        _engine = ResilienceEngine(
            retry_policy=settings.default_retry_policy(),
            circuit_config=settings.default_circuit_config(),
        )
    return _engine


def reset_resilience_engine() -> None:
    """Drop the application engine so the next call builds a fresh one"""
    global _engine
    _engine = None
