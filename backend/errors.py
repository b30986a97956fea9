"""
Speech Pipeline Errors

Error taxonomy shared by the resilience engine, the remote client,
the providers and playback, plus the classification step that turns
any raised value into a ProcessedError for diagnostics.
"""

import traceback
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from config import settings
from utils.logger import logger


class SpeechError(Exception):
    """Base class for every error raised by the speech pipeline"""
    pass


class ValidationError(SpeechError):
    """Raised when a request is malformed. Never retried."""
    pass


class RemoteError(SpeechError):
    """Raised when the synthesis server answers with a non-success status"""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        super().__init__(message or f"Server returned {status}")


class RequestTimeoutError(SpeechError, TimeoutError):
    """Raised when a remote call does not complete within its timeout"""
    pass


class NetworkError(SpeechError):
    """Raised when the server cannot be reached at all"""
    pass


class CircuitOpenError(SpeechError):
    """Raised when a circuit is open and the call is rejected without running"""

    def __init__(self, circuit_key: str):
        self.circuit_key = circuit_key
        super().__init__(f"Circuit breaker is open for {circuit_key}")


class RetryExhaustedError(SpeechError):
    """Raised when every retry attempt failed; wraps the last cause"""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Operation failed after {attempts} attempts: {last_error}")


class DecodeError(SpeechError):
    """Raised when synthesized audio cannot be decoded for playback"""
    pass


class PlaybackError(SpeechError):
    """Raised when playback fails to start or errors while running"""
    pass


class ProviderNotAvailableError(SpeechError):
    """Raised when a provider is not available or not initialized"""
    pass


class ProviderConfigError(SpeechError):
    """Raised when provider configuration is invalid"""
    pass


# Errors that describe the caller's input or local state, not dependency health
NON_RETRYABLE_ERRORS = (ValidationError, CircuitOpenError, DecodeError, PlaybackError)


class ErrorKind(str, Enum):
    """Fixed classification applied to every raised value"""
    VALIDATION = "validation"
    REMOTE = "remote"
    TIMEOUT = "timeout"
    NETWORK = "network"
    CIRCUIT_OPEN = "circuit_open"
    RETRY_EXHAUSTED = "retry_exhausted"
    DECODE = "decode"
    PLAYBACK = "playback"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Error severity levels for prioritization"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_KIND_BY_TYPE = (
    (ValidationError, ErrorKind.VALIDATION),
    (RemoteError, ErrorKind.REMOTE),
    (RequestTimeoutError, ErrorKind.TIMEOUT),
    (NetworkError, ErrorKind.NETWORK),
    (CircuitOpenError, ErrorKind.CIRCUIT_OPEN),
    (RetryExhaustedError, ErrorKind.RETRY_EXHAUSTED),
    (DecodeError, ErrorKind.DECODE),
    (PlaybackError, ErrorKind.PLAYBACK),
    (ProviderNotAvailableError, ErrorKind.PROVIDER_UNAVAILABLE),
    (ProviderConfigError, ErrorKind.PROVIDER_UNAVAILABLE),
    (TimeoutError, ErrorKind.TIMEOUT),
    (ConnectionError, ErrorKind.NETWORK),
)


def classify_error(error: Any) -> ErrorKind:
    """Map any raised value onto an ErrorKind"""
    for error_type, kind in _KIND_BY_TYPE:
        if isinstance(error, error_type):
            return kind
    return ErrorKind.UNKNOWN


def extract_error_message(error: Any) -> str:
    """Human-readable message for exceptions and arbitrary values alike"""
    if isinstance(error, BaseException):
        message = str(error)
        return message or type(error).__name__
    return str(error)


@dataclass(frozen=True)
class ProcessedError:
    """Structured, immutable record of a handled error"""
    id: str
    kind: ErrorKind
    message: str
    severity: ErrorSeverity
    timestamp: datetime
    original: Any = None
    context: Optional[str] = None
    stack_trace: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "metadata": dict(self.metadata),
        }


class ErrorHandler:
    """
    Classifies errors and keeps a bounded history for diagnostics.

    The history is read-only information: nothing in the resilience
    engine consults it when deciding to retry or open a circuit.
    """

    def __init__(self, max_history: Optional[int] = None):
        self.max_history = max_history or settings.ERROR_HISTORY_SIZE
        self._history: Deque[ProcessedError] = deque(maxlen=self.max_history)

    def handle_error(
        self,
        error: Any,
        context: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProcessedError:
        """
        Classify, log and record an error.

        Args:
            error: Any raised value (exception or otherwise)
            context: Where the error happened (e.g. 'PlaybackEngine.play')
            severity: Overrides the default severity
            metadata: Extra diagnostic data

        Returns:
            The ProcessedError appended to history
        """
        processed = self.process_error(error, context, severity, metadata)

        logger.error(
            f"[{processed.kind.value}] {processed.message}"
            + (f" (context={processed.context})" if processed.context else "")
        )

        self._history.append(processed)
        return processed

    def process_error(
        self,
        error: Any,
        context: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ProcessedError:
        """Convert a raised value into a ProcessedError without recording it"""
        is_exception = isinstance(error, BaseException)

        stack_trace = None
        if is_exception and error.__traceback__ is not None:
            stack_trace = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        # Non-exception values are usually programming slips, not outages
        default_severity = ErrorSeverity.MEDIUM if is_exception else ErrorSeverity.LOW

        return ProcessedError(
            id=f"err_{uuid.uuid4().hex[:12]}",
            kind=classify_error(error),
            message=extract_error_message(error),
            severity=severity or default_severity,
            timestamp=datetime.now(),
            original=error,
            context=context,
            stack_trace=stack_trace,
            metadata=dict(metadata or {}),
        )

    def get_history(self, limit: Optional[int] = None) -> List[ProcessedError]:
        """Get recent errors, newest first"""
        errors = list(reversed(self._history))
        return errors[:limit] if limit is not None else errors

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def history_size(self) -> int:
        return len(self._history)
