"""Concurrency-limited, retrying executor for outbound provider calls.

Every request a model makes to its provider goes through an AsyncCaller so
that it benefits from:
- A process-local ceiling on simultaneous in-flight requests (FIFO queueing)
- Retries with exponential backoff and jitter for transient failures
- Timeout and abort-signal handling around the whole call, retries included
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, TypeVar

from ..errors import CancelledInvocationError, InvocationTimeoutError, classify_exception, is_transient
from ..retry import Backoff, ExponentialBackoff
from .signal import AbortSignal, guard, guard_stream

if TYPE_CHECKING:
    from ..runnables.config import CallOptions

T = TypeVar("T")

logger = logging.getLogger("lmcore.caller")

FailedAttemptHook = Callable[[BaseException, int], None]


class AsyncCaller:
    """Run provider calls with a concurrency ceiling and retry policy.

    Args:
        max_concurrency: Max simultaneous calls through this caller (None = unbounded)
        max_retries: Retries after the first attempt; total attempts = max_retries + 1
        backoff: Delay strategy between attempts
        on_failed_attempt: Called with (error, attempt_number) before each retry;
            raising from it stops retrying with that exception

    Defaults come from LMCORE_CALLER_* settings.

    Example:
        >>> caller = AsyncCaller(max_concurrency=2, max_retries=3)
        >>> data = await caller.call(client.complete, prompt)
    """

    __slots__ = ("max_concurrency", "max_retries", "backoff", "on_failed_attempt", "_semaphore")

    def __init__(
        self,
        max_concurrency: int | None = None,
        max_retries: int | None = None,
        backoff: Backoff | None = None,
        on_failed_attempt: FailedAttemptHook | None = None,
    ) -> None:
        from ..config import get_settings

        cfg = get_settings().caller
        self.max_concurrency = max_concurrency if max_concurrency is not None else cfg.max_concurrency
        self.max_retries = max_retries if max_retries is not None else cfg.max_retries
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.backoff = backoff or ExponentialBackoff.from_settings(cfg)
        self.on_failed_attempt = on_failed_attempt
        self._semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _slot(self) -> contextlib.AbstractAsyncContextManager[object]:
        return self._semaphore if self._semaphore is not None else contextlib.nullcontext()

    async def call(self, fn: Callable[..., Awaitable[T] | T], *args: Any, **kwargs: Any) -> T:
        """Call `fn` under the concurrency ceiling, retrying transient failures.

        The slot is released while backing off so that queued calls can run.
        After the last attempt the final error is re-raised unchanged.
        """
        attempt = 0
        while True:
            try:
                async with self._slot():
                    result = fn(*args, **kwargs)
                    if inspect.isawaitable(result):
                        result = await result
                    return result  # type: ignore[return-value]
            except (CancelledInvocationError, InvocationTimeoutError):
                raise
            except Exception as e:
                if attempt >= self.max_retries or not is_transient(e):
                    raise
                attempt += 1
                await self._back_off(e, attempt)

    async def stream(self, fn: Callable[..., AsyncIterator[T]], *args: Any, **kwargs: Any) -> AsyncIterator[T]:
        """Iterate `fn(*args, **kwargs)` while holding a concurrency slot.

        A transient failure before the first item restarts the stream; once an
        item has been yielded, failures propagate unchanged.
        """
        attempt = 0
        while True:
            started = False
            try:
                async with self._slot():
                    async for item in fn(*args, **kwargs):
                        started = True
                        yield item
                return
            except (CancelledInvocationError, InvocationTimeoutError):
                raise
            except Exception as e:
                if started or attempt >= self.max_retries or not is_transient(e):
                    raise
                attempt += 1
                await self._back_off(e, attempt)

    async def _back_off(self, error: Exception, attempt: int) -> None:
        delay = self.backoff.delay(attempt - 1)
        logger.warning(
            f"Attempt {attempt}/{self.max_attempts} failed ({classify_exception(error)}): {error}. "
            f"Retrying in {delay:.2f}s"
        )
        if self.on_failed_attempt is not None:
            self.on_failed_attempt(error, attempt)
        await asyncio.sleep(delay)

    async def stream_with_options(
        self,
        options: CallOptions | Mapping[str, Any] | None,
        fn: Callable[..., AsyncIterator[T]],
        *args: Any,
        **kwargs: Any,
    ) -> AsyncIterator[T]:
        """Like `stream`, bounded by the `timeout` and `signal` of the call options."""
        timeout, signal = _deadline_options(options)
        if signal is not None:
            signal.throw_if_aborted()
        async for item in guard_stream(self.stream(fn, *args, **kwargs), timeout=timeout, signal=signal):
            yield item

    async def call_with_options(
        self,
        options: CallOptions | Mapping[str, Any] | None,
        fn: Callable[..., Awaitable[T] | T],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Like `call`, bounded by the `timeout` and `signal` of the call options."""
        timeout, signal = _deadline_options(options)
        if signal is not None:
            signal.throw_if_aborted()
        return await guard(self.call(fn, *args, **kwargs), timeout=timeout, signal=signal)


def _deadline_options(options: CallOptions | Mapping[str, Any] | None) -> tuple[float | None, AbortSignal | None]:
    if options is None:
        return None, None
    if isinstance(options, Mapping):
        return options.get("timeout"), options.get("signal")
    return getattr(options, "timeout", None), getattr(options, "signal", None)
