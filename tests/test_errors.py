#!/usr/bin/env python3
"""
Error Taxonomy and ErrorHandler Tests
"""

import pytest
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.errors import (
    CircuitOpenError,
    DecodeError,
    ErrorHandler,
    ErrorKind,
    ErrorSeverity,
    NetworkError,
    NON_RETRYABLE_ERRORS,
    PlaybackError,
    ProviderNotAvailableError,
    RemoteError,
    RequestTimeoutError,
    RetryExhaustedError,
    SpeechError,
    ValidationError,
    classify_error,
    extract_error_message,
)


# ============================================================================
# CLASSIFICATION TESTS
# ============================================================================

class TestClassifyError:
    """Tests for classify_error"""

    @pytest.mark.parametrize("error, kind", [
        (ValidationError("x"), ErrorKind.VALIDATION),
        (RemoteError(500), ErrorKind.REMOTE),
        (RequestTimeoutError("x"), ErrorKind.TIMEOUT),
        (NetworkError("x"), ErrorKind.NETWORK),
        (CircuitOpenError("remote.speak"), ErrorKind.CIRCUIT_OPEN),
        (RetryExhaustedError(3, RemoteError(500)), ErrorKind.RETRY_EXHAUSTED),
        (DecodeError("x"), ErrorKind.DECODE),
        (PlaybackError("x"), ErrorKind.PLAYBACK),
        (ProviderNotAvailableError("x"), ErrorKind.PROVIDER_UNAVAILABLE),
        (TimeoutError(), ErrorKind.TIMEOUT),
        (ConnectionRefusedError(), ErrorKind.NETWORK),
        (KeyError("x"), ErrorKind.UNKNOWN),
        ("just a string", ErrorKind.UNKNOWN),
    ])
    def test_kinds(self, error, kind):
        assert classify_error(error) == kind

    def test_timeout_error_is_builtin_timeout(self):
        assert isinstance(RequestTimeoutError("x"), TimeoutError)
        assert isinstance(RequestTimeoutError("x"), SpeechError)

    def test_non_retryable_set(self):
        assert ValidationError in NON_RETRYABLE_ERRORS
        assert CircuitOpenError in NON_RETRYABLE_ERRORS
        assert RemoteError not in NON_RETRYABLE_ERRORS


class TestErrorMessages:
    """Tests for error messages"""

    def test_remote_error_default_message(self):
        error = RemoteError(503)
        assert error.status == 503
        assert str(error) == "Server returned 503"

    def test_circuit_open_message(self):
        assert str(CircuitOpenError("remote.speak")) == "Circuit breaker is open for remote.speak"

    def test_retry_exhausted_keeps_cause(self):
        cause = NetworkError("connection refused")
        error = RetryExhaustedError(2, cause)
        assert error.attempts == 2
        assert error.last_error is cause
        assert "2 attempts" in str(error)

    def test_extract_message(self):
        assert extract_error_message(ValueError("boom")) == "boom"
        assert extract_error_message(ValueError()) == "ValueError"
        assert extract_error_message(42) == "42"


# ============================================================================
# ERROR HANDLER TESTS
# ============================================================================

class TestErrorHandler:
    """Tests for ErrorHandler history"""

    def test_handle_error_records(self):
        handler = ErrorHandler(max_history=10)
        processed = handler.handle_error(
            RemoteError(500), context="remote.speak", metadata={"attempts": 2}
        )

        assert processed.kind == ErrorKind.REMOTE
        assert processed.severity == ErrorSeverity.MEDIUM
        assert processed.context == "remote.speak"
        assert processed.metadata == {"attempts": 2}
        assert processed.id.startswith("err_")
        assert handler.history_size == 1

    def test_non_exception_values_are_low_severity(self):
        handler = ErrorHandler(max_history=10)
        processed = handler.handle_error("something odd")

        assert processed.severity == ErrorSeverity.LOW
        assert processed.message == "something odd"
        assert processed.stack_trace is None

    def test_explicit_severity_wins(self):
        handler = ErrorHandler(max_history=10)
        processed = handler.handle_error(RemoteError(500), severity=ErrorSeverity.CRITICAL)
        assert processed.severity == ErrorSeverity.CRITICAL

    def test_stack_trace_captured_for_raised_errors(self):
        handler = ErrorHandler(max_history=10)
        try:
            raise NetworkError("unreachable")
        except NetworkError as e:
            processed = handler.handle_error(e)

        assert "NetworkError" in processed.stack_trace

    def test_history_is_bounded_and_newest_first(self):
        handler = ErrorHandler(max_history=100)
        for i in range(150):
            handler.handle_error(RemoteError(500, f"error {i}"))

        history = handler.get_history()
        assert len(history) == 100
        assert history[0].message == "error 149"
        assert history[-1].message == "error 50"

    def test_history_limit(self):
        handler = ErrorHandler(max_history=10)
        for i in range(5):
            handler.handle_error(RemoteError(500, f"error {i}"))

        assert [e.message for e in handler.get_history(limit=2)] == ["error 4", "error 3"]

    def test_process_error_does_not_record(self):
        handler = ErrorHandler(max_history=10)
        handler.process_error(RemoteError(500))
        assert handler.history_size == 0

    def test_clear_history(self):
        handler = ErrorHandler(max_history=10)
        handler.handle_error(RemoteError(500))
        handler.clear_history()
        assert handler.get_history() == []

    def test_to_dict(self):
        handler = ErrorHandler(max_history=10)
        data = handler.handle_error(DecodeError("bad wav"), context="PlaybackEngine.play").to_dict()

        assert data["kind"] == "decode"
        assert data["message"] == "bad wav"
        assert data["context"] == "PlaybackEngine.play"
        assert "timestamp" in data
