"""Sync entry points over the async core.

Models and runnables are async-first; `invoke`, `stream` and `batch` use
these helpers to drive the async implementation from synchronous code.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Coroutine, Iterator
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

T = TypeVar("T")


def _in_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def run_sync(coro: Coroutine[object, object, T]) -> T:
    """Run async coroutine from synchronous context.

    Handles edge cases:
    - No running loop: asyncio.run()
    - Inside a running loop (e.g. Jupyter, a web handler): run it on a
      worker thread with its own loop, blocking until it completes
    """
    if not _in_running_loop():
        return asyncio.run(coro)
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def iterate_sync(stream: AsyncIterator[T]) -> Iterator[T]:
    """Iterate an async iterator from synchronous code, item by item.

    Without a running loop, items are pulled on a private loop as the caller
    consumes them. Inside a running loop the stream is drained on a worker
    thread, with items handed over through a queue as they arrive.
    """
    if not _in_running_loop():
        yield from _iterate_on_private_loop(stream)
        return
    yield from _iterate_on_thread(stream)


def _iterate_on_private_loop(stream: AsyncIterator[T]) -> Iterator[T]:
    loop = asyncio.new_event_loop()
    iterator = aiter(stream)
    try:
        while True:
            try:
                yield loop.run_until_complete(anext(iterator))
            except StopAsyncIteration:
                return
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            loop.run_until_complete(aclose())
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()


_DONE = object()


def _iterate_on_thread(stream: AsyncIterator[T]) -> Iterator[T]:
    import queue

    items: queue.Queue[object] = queue.Queue()
    error: list[BaseException] = []

    async def drain() -> None:
        async for item in stream:
            items.put(item)

    def runner() -> None:
        try:
            asyncio.run(drain())
        except BaseException as e:  # noqa: BLE001 - re-raised on the consumer side
            error.append(e)
        finally:
            items.put(_DONE)

    thread = threading.Thread(target=runner, daemon=True)
    thread.start()
    while (item := items.get()) is not _DONE:
        yield item  # type: ignore[misc]
    thread.join()
    if error:
        raise error[0]
