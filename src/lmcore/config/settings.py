"""Environment-based configuration using pydantic-settings.

Provides type-safe, validated configuration from environment variables
with sensible defaults. Supports .env files and nested configuration.

Example:
    >>> from lmcore.config import get_settings
    >>> settings = get_settings()
    >>> settings.caller.max_retries
    6
    >>> settings.logging.level
    'INFO'

    # Or with environment variables:
    # LMCORE_CALLER_MAX_RETRIES=2
    # LMCORE_LOG_LEVEL=DEBUG
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import (
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    computed_field,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    """Response cache configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LMCORE_CACHE_",
        extra="ignore",
    )

    enabled_by_default: bool = Field(
        default=False,
        description="Use the process-wide cache for models constructed without a cache argument",
    )
    max_size: PositiveInt | None = Field(default=None, description="Max keys held by the in-memory cache")
    ttl: PositiveFloat = Field(default=3600.0, description="TTL in seconds for networked cache entries")
    redis_url: SecretStr | None = Field(default=None, description="Redis URL for a shared cache")

    @computed_field
    @property
    def backend(self) -> Literal["memory", "redis"]:
        """Determine cache backend from configuration."""
        return "redis" if self.redis_url else "memory"


class CallerSettings(BaseSettings):
    """Concurrency and retry defaults for the async caller."""

    model_config = SettingsConfigDict(
        env_prefix="LMCORE_CALLER_",
        extra="ignore",
    )

    max_concurrency: PositiveInt | None = Field(
        default=None,
        description="Max simultaneous provider requests (None = unbounded)",
    )
    max_retries: Annotated[int, Field(ge=0, le=20)] = 6
    base_delay: PositiveFloat = Field(default=1.0, description="Base delay in seconds")
    max_delay: PositiveFloat = Field(default=30.0, description="Maximum delay in seconds")
    multiplier: PositiveFloat = Field(default=2.0, description="Exponential backoff base")
    jitter: bool = True


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LMCORE_LOG_",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "none"] = "console"

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        return v.upper() if isinstance(v, str) else v


class LmcoreSettings(BaseSettings):
    """Root settings for lmcore.

    Loads configuration from environment variables with LMCORE_ prefix.
    Supports nested configuration and .env files.

    Example environment variables:
        LMCORE_VERBOSE=true
        LMCORE_CACHE_ENABLED_BY_DEFAULT=true
        LMCORE_CALLER_MAX_CONCURRENCY=4
        LMCORE_LOG_FORMAT=json
    """

    model_config = SettingsConfigDict(
        env_prefix="LMCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    verbose: bool = Field(default=False, description="Log lifecycle events of every model call")
    environment: Literal["development", "staging", "production"] = "development"

    cache: CacheSettings = Field(default_factory=CacheSettings)
    caller: CallerSettings = Field(default_factory=CallerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_env(cls, v: str) -> str:
        """Normalize environment name to lowercase."""
        return v.lower() if isinstance(v, str) else v

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> LmcoreSettings:
    """Get the global settings instance (cached)."""
    return LmcoreSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing).

    After calling this, the next get_settings() call will
    reload configuration from environment.
    """
    get_settings.cache_clear()
