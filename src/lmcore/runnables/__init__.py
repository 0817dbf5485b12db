"""Runnable composition and per-call options."""

from .base import (
    Runnable,
    RunnableBinding,
    RunnableLambda,
    RunnableLike,
    RunnableParallel,
    RunnableSequence,
    coerce_to_runnable,
)
from .config import CallOptions, OptionsLike, ensure_options, merge_call_options

__all__ = [
    "Runnable",
    "RunnableBinding",
    "RunnableLambda",
    "RunnableLike",
    "RunnableParallel",
    "RunnableSequence",
    "coerce_to_runnable",
    "CallOptions",
    "OptionsLike",
    "ensure_options",
    "merge_call_options",
]
