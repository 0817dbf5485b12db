"""Caller-controlled cancellation for in-flight model calls.

An AbortController owns an AbortSignal; the signal travels with the call
options and is raced against the provider call. When it fires, the call is
cancelled and the invocation settles with CancelledInvocationError.

Example:
    >>> controller = AbortController()
    >>> task = asyncio.create_task(model.ainvoke("hi", {"signal": controller.signal}))
    >>> controller.abort("user pressed stop")
    >>> await task  # raises CancelledInvocationError
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from typing import TypeVar

from ..errors import CancelledInvocationError, InvocationTimeoutError

T = TypeVar("T")

__all__ = [
    "AbortController",
    "AbortSignal",
    "guard",
    "guard_stream",
]


class AbortSignal:
    """Observable cancellation flag.

    Signals are one-shot: once aborted they stay aborted.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: object = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> object:
        return self._reason

    async def wait(self) -> object:
        """Block until aborted, returning the abort reason."""
        await self._event.wait()
        return self._reason

    def throw_if_aborted(self) -> None:
        if self.aborted:
            raise CancelledInvocationError(self._reason)

    def _abort(self, reason: object) -> None:
        if not self.aborted:
            self._reason = reason
            self._event.set()

    @classmethod
    def aborted_with(cls, reason: object = None) -> AbortSignal:
        """Create a signal that is already aborted."""
        signal = cls()
        signal._abort(reason)
        return signal

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self.aborted}, reason={self._reason!r})"


class AbortController:
    """Owner side of an AbortSignal."""

    __slots__ = ("signal",)

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: object = "aborted") -> None:
        self.signal._abort(reason)


async def guard(
    awaitable: Awaitable[T],
    *,
    timeout: float | None = None,
    signal: AbortSignal | None = None,
) -> T:
    """Await `awaitable`, cancelling it on timeout or abort.

    Raises:
        InvocationTimeoutError: The deadline passed first
        CancelledInvocationError: The signal fired first
    """
    if signal is None and timeout is None:
        return await awaitable
    if signal is not None:
        signal.throw_if_aborted()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait()) if signal is not None else None
    pending = {task} if waiter is None else {task, waiter}
    try:
        done, _ = await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await _cancel(task)
        raise
    finally:
        if waiter is not None and not waiter.done():
            waiter.cancel()

    if task in done:
        return task.result()
    await _cancel(task)
    if waiter is not None and waiter in done:
        raise CancelledInvocationError(signal.reason if signal else None)
    raise InvocationTimeoutError(timeout or 0.0)


async def guard_stream(
    stream: AsyncIterator[T],
    *,
    timeout: float | None = None,
    signal: AbortSignal | None = None,
) -> AsyncIterator[T]:
    """Iterate `stream` under one overall deadline and an abort signal."""
    if signal is None and timeout is None:
        async for item in stream:
            yield item
        return

    deadline = time.monotonic() + timeout if timeout is not None else None
    iterator = aiter(stream)
    try:
        while True:
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise InvocationTimeoutError(timeout or 0.0)
            try:
                item = await guard(anext(iterator), timeout=remaining, signal=signal)
            except StopAsyncIteration:
                return
            yield item
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


async def _cancel(task: asyncio.Future[object]) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:  # noqa: BLE001 - the cancellation outcome replaces it
        pass
