"""Standardized error handling for language model calls.

Provides error codes and an exception hierarchy that lets the async caller
decide what to retry, and lets callers tell cancellation apart from failure.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Self


class ErrorCode(StrEnum):
    """Standard error codes for model invocation failures.

    Using StrEnum allows these to serialize cleanly and be pattern-matched.
    """
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INVALID_REQUEST = "INVALID_REQUEST"
    AUTHENTICATION = "AUTHENTICATION"
    PARSE_ERROR = "PARSE_ERROR"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


# Transient failures: the same request may succeed if sent again
TRANSIENT_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.RATE_LIMITED,
    ErrorCode.TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.SERVICE_UNAVAILABLE,
})


# Exception name/message fragment -> ErrorCode for automatic classification
_EXCEPTION_PATTERNS: dict[str, ErrorCode] = {
    "ratelimit": ErrorCode.RATE_LIMITED,
    "rate limit": ErrorCode.RATE_LIMITED,
    "too many requests": ErrorCode.RATE_LIMITED,
    "timeout": ErrorCode.TIMEOUT,
    "timed out": ErrorCode.TIMEOUT,
    "connection": ErrorCode.NETWORK_ERROR,
    "network": ErrorCode.NETWORK_ERROR,
    "unavailable": ErrorCode.SERVICE_UNAVAILABLE,
    "overloaded": ErrorCode.SERVICE_UNAVAILABLE,
    "auth": ErrorCode.AUTHENTICATION,
    "permission": ErrorCode.AUTHENTICATION,
    "json": ErrorCode.PARSE_ERROR,
    "decode": ErrorCode.PARSE_ERROR,
    "validation": ErrorCode.INVALID_REQUEST,
    "invalid": ErrorCode.INVALID_REQUEST,
}


def classify_exception(exc: BaseException) -> ErrorCode:
    """Map an exception to the closest error code.

    Library errors report their own code. Builtin timeout and connection
    errors map directly; anything else is matched on type name and message.
    Unrecognized errors are UNKNOWN, which the caller never retries.
    """
    if isinstance(exc, LMError):
        return exc.code
    if isinstance(exc, TimeoutError):
        return ErrorCode.TIMEOUT
    if isinstance(exc, ConnectionError):
        return ErrorCode.NETWORK_ERROR

    exc_name = type(exc).__name__.lower()
    exc_msg = str(exc).lower()

    for pattern, code in _EXCEPTION_PATTERNS.items():
        if pattern in exc_name or pattern in exc_msg:
            return code

    return ErrorCode.UNKNOWN


def is_transient(exc: BaseException) -> bool:
    """Whether a failed call is worth retrying."""
    if isinstance(exc, LMError):
        return exc.retryable
    return classify_exception(exc) in TRANSIENT_CODES


class LMError(Exception):
    """Base class for all lmcore errors."""

    code: ErrorCode = ErrorCode.UNKNOWN

    @property
    def retryable(self) -> bool:
        return self.code in TRANSIENT_CODES


class ProviderError(LMError):
    """Failure reported by an underlying model provider.

    The explicit `retryable` flag wins over the code-based default, so
    provider adapters can mark e.g. a 500 on a non-idempotent call as final.

    Example:
        >>> err = ProviderError.from_status(429, "slow down")
        >>> err.code, err.retryable
        (<ErrorCode.RATE_LIMITED: 'RATE_LIMITED'>, True)
    """

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode = ErrorCode.UNKNOWN,
        retryable: bool | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        return self.code in TRANSIENT_CODES

    @classmethod
    def from_status(cls, status_code: int, message: str = "") -> Self:
        """Build an error from an HTTP status returned by a provider."""
        match status_code:
            case 429:
                code = ErrorCode.RATE_LIMITED
            case 408 | 504:
                code = ErrorCode.TIMEOUT
            case 500 | 502 | 503:
                code = ErrorCode.SERVICE_UNAVAILABLE
            case 401 | 403:
                code = ErrorCode.AUTHENTICATION
            case _ if 400 <= status_code < 500:
                code = ErrorCode.INVALID_REQUEST
            case _:
                code = ErrorCode.UNKNOWN
        return cls(message or f"Provider returned HTTP {status_code}", code=code, status_code=status_code)


class CancelledInvocationError(LMError):
    """Raised when a caller-supplied abort signal fires mid-call."""

    code = ErrorCode.CANCELLED

    def __init__(self, reason: object = None) -> None:
        self.reason = reason
        super().__init__(f"Invocation cancelled: {reason}" if reason is not None else "Invocation cancelled")

    @property
    def retryable(self) -> bool:
        return False


class InvocationTimeoutError(LMError):
    """Raised when a call exceeds the `timeout` from its call options.

    Unlike a provider timeout this is a hard deadline on the whole call,
    retries included, so it is never retried itself.
    """

    code = ErrorCode.TIMEOUT

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Invocation exceeded timeout of {timeout:g}s")

    @property
    def retryable(self) -> bool:
        return False


class OutputParserException(LMError, ValueError):
    """Raised when model output cannot be parsed into the requested shape.

    Attributes:
        llm_output: The raw text (or message) that failed to parse
    """

    code = ErrorCode.PARSE_ERROR

    def __init__(self, message: str, *, llm_output: object = None) -> None:
        super().__init__(message)
        self.llm_output = llm_output

    @property
    def retryable(self) -> bool:
        return False
