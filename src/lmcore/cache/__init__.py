"""Generation caching for language model calls.

Backends:
    - InMemoryCache: Thread-safe in-memory (default)
    - RedisCache: Sync redis-py backend (requires lmcore[redis])
    - AsyncRedisCache: Async redis.asyncio backend (requires lmcore[redis])
"""

from .cache import BaseCache, InMemoryCache, get_cache, make_cache_key, reset_cache, set_cache

__all__ = [
    "BaseCache",
    "InMemoryCache",
    "make_cache_key",
    "get_cache",
    "set_cache",
    "reset_cache",
    # Redis (lazy import)
    "RedisCache",
    "AsyncRedisCache",
]


def __getattr__(name: str) -> object:
    """Lazy import Redis backends to avoid import-time dependency."""
    if name in ("RedisCache", "AsyncRedisCache"):
        from .redis import AsyncRedisCache, RedisCache
        return RedisCache if name == "RedisCache" else AsyncRedisCache
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
