"""Backoff strategies used by the async caller between retry attempts.

Example:
    >>> from lmcore.runtime import AsyncCaller
    >>> from lmcore.retry import ExponentialBackoff
    >>>
    >>> caller = AsyncCaller(
    ...     max_retries=3,
    ...     backoff=ExponentialBackoff(base=0.5, max_delay=10.0),
    ... )
"""

from .backoff import (
    Backoff,
    ConstantBackoff,
    DecorrelatedJitter,
    ExponentialBackoff,
)

__all__ = [
    "Backoff",
    "ExponentialBackoff",
    "ConstantBackoff",
    "DecorrelatedJitter",
]
