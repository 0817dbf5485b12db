"""Runtime primitives: the async caller, abort signals and sync interop."""

from .caller import AsyncCaller, FailedAttemptHook
from .interop import iterate_sync, run_sync
from .signal import AbortController, AbortSignal, guard, guard_stream

__all__ = [
    "AsyncCaller",
    "FailedAttemptHook",
    "AbortController",
    "AbortSignal",
    "guard",
    "guard_stream",
    "run_sync",
    "iterate_sync",
]
