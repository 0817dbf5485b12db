"""Callback handlers and managers for run lifecycle events."""

from .base import BaseCallbackHandler, FunctionCallbackHandler
from .logging import LoggingCallbackHandler
from .manager import (
    BaseCallbackManager,
    BaseRunManager,
    CallbackManager,
    CallbackManagerForChainRun,
    CallbackManagerForLLMRun,
    Callbacks,
)

__all__ = [
    "BaseCallbackHandler",
    "FunctionCallbackHandler",
    "LoggingCallbackHandler",
    "BaseCallbackManager",
    "BaseRunManager",
    "CallbackManager",
    "CallbackManagerForLLMRun",
    "CallbackManagerForChainRun",
    "Callbacks",
    # OpenTelemetry (lazy import)
    "OpenTelemetryCallbackHandler",
]


def __getattr__(name: str) -> object:
    """Lazy import the OpenTelemetry handler to avoid import-time dependency."""
    if name == "OpenTelemetryCallbackHandler":
        from .tracers import OpenTelemetryCallbackHandler
        return OpenTelemetryCallbackHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
