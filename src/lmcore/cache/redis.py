"""Redis cache backends for generation caching.

Each cache key maps to a Redis hash of `candidate index -> JSON generation`,
so candidates under one key are written independently and never torn.
Supports both sync redis-py and async redis.asyncio clients.

Requires: pip install lmcore[redis]
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import orjson

from .cache import BaseCache

if TYPE_CHECKING:
    from ..outputs import Generation

DEFAULT_PREFIX = "lmcore:"


@runtime_checkable
class RedisClient(Protocol):
    """Protocol for sync Redis client (duck typing)."""
    def hget(self, name: str, key: str) -> bytes | None: ...
    def hset(self, name: str, key: str | None = None, value: object = None, mapping: object = None) -> int: ...
    def expire(self, name: str, time: int) -> bool: ...
    def delete(self, *names: str) -> int: ...
    def scan_iter(self, match: str) -> object: ...
    def ping(self) -> bool: ...


@runtime_checkable
class AsyncRedisClient(Protocol):
    """Protocol for async Redis client (duck typing)."""
    async def hget(self, name: str, key: str) -> bytes | None: ...
    async def hset(self, name: str, key: str | None = None, value: object = None, mapping: object = None) -> int: ...
    async def expire(self, name: str, time: int) -> bool: ...
    async def delete(self, *names: str) -> int: ...
    def scan_iter(self, match: str) -> object: ...
    async def ping(self) -> bool: ...


def _import_redis() -> object:
    """Lazy import redis with clear error."""
    try:
        import redis
        return redis
    except ImportError as e:
        raise ImportError(
            "Redis cache requires redis package. "
            "Install with: pip install lmcore[redis]"
        ) from e


def _dump(generation: Generation) -> bytes:
    return orjson.dumps(generation.model_dump(mode="json"))


def _load(raw: bytes | str | None) -> Generation | None:
    if raw is None:
        return None
    from ..outputs import generation_from_dict

    return generation_from_dict(orjson.loads(raw))


def _default_ttl() -> int:
    from ..config import get_settings

    return int(get_settings().cache.ttl)


class RedisCache(BaseCache):
    """Redis-backed generation cache for sharing results across processes.

    Args:
        client: Existing Redis client instance (sync)
        prefix: Key prefix for namespacing (default: "lmcore:")
        ttl: Expiry in seconds, refreshed on every write (None = settings default)

    Example:
        >>> import redis
        >>> cache = RedisCache(redis.from_url("redis://localhost:6379/0"))
        >>> set_cache(cache)  # Use globally

        # Or from URL directly:
        >>> cache = RedisCache.from_url("redis://localhost:6379/0")
    """

    __slots__ = ("_client", "_prefix", "_ttl")

    def __init__(self, client: RedisClient, prefix: str = DEFAULT_PREFIX, ttl: int | None = None) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl = ttl if ttl is not None else _default_ttl()

    @classmethod
    def from_url(cls, url: str, prefix: str = DEFAULT_PREFIX, ttl: int | None = None, **redis_kwargs: object) -> RedisCache:
        """Create cache from Redis URL.

        Args:
            url: Redis connection URL (redis://host:port/db)
            prefix: Key prefix for namespacing
            ttl: Expiry in seconds
            **redis_kwargs: Additional args passed to redis.from_url
        """
        redis = _import_redis()
        client = redis.from_url(url, **redis_kwargs)  # type: ignore[union-attr]
        return cls(client, prefix, ttl)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def lookup(self, key: str, index: int = 0) -> Generation | None:
        return _load(self._client.hget(self._key(key), str(index)))

    def update(self, key: str, index: int, generation: Generation) -> None:
        name = self._key(key)
        self._client.hset(name, str(index), _dump(generation))
        if self._ttl:
            self._client.expire(name, self._ttl)

    def update_all(self, key: str, generations: Sequence[Generation]) -> None:
        if not generations:
            return
        name = self._key(key)
        self._client.hset(name, mapping={str(i): _dump(g) for i, g in enumerate(generations)})
        if self._ttl:
            self._client.expire(name, self._ttl)

    def clear(self) -> None:
        """Clear all lmcore keys using SCAN."""
        if keys := list(self._client.scan_iter(match=f"{self._prefix}*")):
            self._client.delete(*keys)

    def ping(self) -> bool:
        """Check Redis connection health."""
        try:
            return bool(self._client.ping())
        except Exception:
            return False


class AsyncRedisCache(BaseCache):
    """Async Redis-backed generation cache using redis.asyncio.

    Models always go through the async methods; the sync ones raise.

    Example:
        >>> cache = AsyncRedisCache.from_url("redis://localhost:6379/0")
        >>> model = FakeChatModel(cache=cache)
    """

    __slots__ = ("_client", "_prefix", "_ttl")

    def __init__(self, client: AsyncRedisClient, prefix: str = DEFAULT_PREFIX, ttl: int | None = None) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl = ttl if ttl is not None else _default_ttl()

    @classmethod
    def from_url(
        cls, url: str, prefix: str = DEFAULT_PREFIX, ttl: int | None = None, **redis_kwargs: object,
    ) -> AsyncRedisCache:
        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            raise ImportError(
                "Async Redis cache requires redis package. "
                "Install with: pip install lmcore[redis]"
            ) from e
        client = aioredis.from_url(url, **redis_kwargs)  # type: ignore[arg-type]
        return cls(client, prefix, ttl)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def lookup(self, key: str, index: int = 0) -> Generation | None:
        raise NotImplementedError("AsyncRedisCache only supports alookup")

    def update(self, key: str, index: int, generation: Generation) -> None:
        raise NotImplementedError("AsyncRedisCache only supports aupdate")

    def clear(self) -> None:
        raise NotImplementedError("AsyncRedisCache only supports aclear")

    async def alookup(self, key: str, index: int = 0) -> Generation | None:
        return _load(await self._client.hget(self._key(key), str(index)))

    async def aupdate(self, key: str, index: int, generation: Generation) -> None:
        name = self._key(key)
        await self._client.hset(name, str(index), _dump(generation))
        if self._ttl:
            await self._client.expire(name, self._ttl)

    async def aupdate_all(self, key: str, generations: Sequence[Generation]) -> None:
        if not generations:
            return
        name = self._key(key)
        await self._client.hset(name, mapping={str(i): _dump(g) for i, g in enumerate(generations)})
        if self._ttl:
            await self._client.expire(name, self._ttl)

    async def aclear(self) -> None:
        if keys := [k async for k in self._client.scan_iter(match=f"{self._prefix}*")]:
            await self._client.delete(*keys)

    async def aping(self) -> bool:
        """Check Redis connection health."""
        try:
            return bool(await self._client.ping())
        except Exception:
            return False
