"""Configuration loaded from LMCORE_* environment variables."""

from .settings import (
    CacheSettings,
    CallerSettings,
    LmcoreSettings,
    LoggingSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "LmcoreSettings",
    "CacheSettings",
    "CallerSettings",
    "LoggingSettings",
    "get_settings",
    "clear_settings_cache",
]
