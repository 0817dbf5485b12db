"""Structured logging for lmcore runs."""

from .logging import (
    BoundLogger,
    CollectingRenderer,
    ConsoleRenderer,
    JsonRenderer,
    LogEntry,
    LogRenderer,
    LogScope,
    NoOpRenderer,
    StructuredLogger,
    configure_from_settings,
    configure_logging,
    get_logger,
    set_renderer,
)

__all__ = [
    "BoundLogger",
    "StructuredLogger",
    "LogEntry",
    "LogScope",
    "LogRenderer",
    "ConsoleRenderer",
    "JsonRenderer",
    "NoOpRenderer",
    "CollectingRenderer",
    "configure_logging",
    "configure_from_settings",
    "set_renderer",
    "get_logger",
]
