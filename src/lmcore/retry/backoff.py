"""Backoff strategies for the async caller.

Provides pluggable delay calculation for retry attempts:
- ExponentialBackoff: Exponential growth with optional jitter (default)
- ConstantBackoff: Fixed delay, mostly for tests and known cooldowns
- DecorrelatedJitter: AWS-style decorrelated jitter for many concurrent retriers
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import CallerSettings


@runtime_checkable
class Backoff(Protocol):
    """Protocol for backoff delay calculation.

    Implementations compute the delay before the next retry attempt.
    Attempt numbers are 0-indexed (first retry = attempt 0).
    """

    def delay(self, attempt: int) -> float: ...


@dataclass(frozen=True, slots=True)
class ExponentialBackoff:
    """Exponential backoff with optional jitter.

    Delay = min(base * (multiplier ^ attempt), max_delay) * jitter

    Attributes:
        base: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay cap in seconds (default: 30.0)
        multiplier: Exponential growth factor (default: 2.0)
        jitter: Scale each delay by a random factor in [0.5, 1.5) (default: True)
    """

    base: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: bool = True

    def delay(self, attempt: int) -> float:
        d = min(self.base * (self.multiplier ** attempt), self.max_delay)
        return d * (0.5 + random.random()) if self.jitter else d

    @classmethod
    def from_settings(cls, settings: CallerSettings) -> ExponentialBackoff:
        return cls(
            base=settings.base_delay,
            max_delay=settings.max_delay,
            multiplier=settings.multiplier,
            jitter=settings.jitter,
        )


@dataclass(frozen=True, slots=True)
class ConstantBackoff:
    """Fixed delay between retries.

    Attributes:
        delay_seconds: Fixed delay in seconds (default: 1.0)
    """

    delay_seconds: float = 1.0

    def delay(self, attempt: int) -> float:
        return self.delay_seconds


@dataclass(frozen=True, slots=True)
class DecorrelatedJitter:
    """AWS-style decorrelated jitter backoff.

    Each delay is drawn between base and three times the previous delay.

    Reference: https://aws.amazon.com/blogs/architecture/exponential-backoff-and-jitter/
    """

    base: float = 1.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        prev = self.base
        for _ in range(attempt):
            prev = min(self.max_delay, random.uniform(self.base, prev * 3))
        return prev
