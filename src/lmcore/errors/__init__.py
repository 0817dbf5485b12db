"""Unified error handling for lmcore.

- ErrorCode: Standard error codes for model call failures
- classify_exception / is_transient: Map arbitrary exceptions onto codes
- LMError hierarchy: Provider, cancellation, timeout and parsing errors
"""

from .errors import (
    TRANSIENT_CODES,
    CancelledInvocationError,
    ErrorCode,
    InvocationTimeoutError,
    LMError,
    OutputParserException,
    ProviderError,
    classify_exception,
    is_transient,
)

__all__ = [
    "ErrorCode", "TRANSIENT_CODES", "classify_exception", "is_transient",
    "LMError", "ProviderError", "CancelledInvocationError", "InvocationTimeoutError",
    "OutputParserException",
]
