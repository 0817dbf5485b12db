"""Response caching for language model calls.

Maps a call fingerprint to the ordered list of candidate generations that a
model produced for it. Keys are built from the prompt text plus the model's
serialized call parameters (see BaseLanguageModel.llm_string), so two calls
share an entry iff both serialize identically.

Entries are never mutated in place: writers swap in a new candidate list, so
concurrent readers always see either the old or the new list, never a mix.
"""

from __future__ import annotations

import hashlib
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..outputs import Generation


def make_cache_key(prompt: str, llm_string: str) -> str:
    """Generate the storage key for a prompt under a model configuration."""
    digest = hashlib.sha256()
    digest.update(prompt.encode())
    digest.update(b"\x00")
    digest.update(llm_string.encode())
    return digest.hexdigest()


class BaseCache(ABC):
    """Abstract base for generation caches.

    Implementations provide indexed lookup/update of candidates under a key.
    Async variants default to the sync ones; networked backends override them.
    """

    @abstractmethod
    def lookup(self, key: str, index: int = 0) -> Generation | None:
        """Get the candidate stored at `index` under `key`, if any."""
        ...

    @abstractmethod
    def update(self, key: str, index: int, generation: Generation) -> None:
        """Store a candidate at `index` (replace if present, append if next)."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""
        ...

    def lookup_all(self, key: str) -> list[Generation] | None:
        """Get all candidates under `key`, reading indices until the first gap."""
        found: list[Generation] = []
        while (gen := self.lookup(key, len(found))) is not None:
            found.append(gen)
        return found or None

    def update_all(self, key: str, generations: Sequence[Generation]) -> None:
        for index, gen in enumerate(generations):
            self.update(key, index, gen)

    async def alookup(self, key: str, index: int = 0) -> Generation | None:
        return self.lookup(key, index)

    async def aupdate(self, key: str, index: int, generation: Generation) -> None:
        self.update(key, index, generation)

    async def alookup_all(self, key: str) -> list[Generation] | None:
        found: list[Generation] = []
        while (gen := await self.alookup(key, len(found))) is not None:
            found.append(gen)
        return found or None

    async def aupdate_all(self, key: str, generations: Sequence[Generation]) -> None:
        for index, gen in enumerate(generations):
            await self.aupdate(key, index, gen)

    async def aclear(self) -> None:
        self.clear()


class InMemoryCache(BaseCache):
    """Thread-safe in-memory cache.

    Uses RLock for synchronization, safe under concurrent access from threads
    and from interleaved tasks. With `max_size` set, the oldest-inserted key is
    evicted once the limit is reached.

    Args:
        max_size: Maximum number of keys (None = unbounded)

    Example:
        >>> cache = InMemoryCache()
        >>> cache.update("k", 0, Generation(text="hi"))
        >>> cache.lookup("k", 0).text
        'hi'
    """

    __slots__ = ("_cache", "_max_size", "_lock")

    def __init__(self, max_size: int | None = None) -> None:
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._cache: dict[str, tuple[Generation, ...]] = {}
        self._max_size = max_size
        self._lock = threading.RLock()

    def lookup(self, key: str, index: int = 0) -> Generation | None:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None or index >= len(entry):
            return None
        return entry[index]

    def lookup_all(self, key: str) -> list[Generation] | None:
        with self._lock:
            entry = self._cache.get(key)
        return list(entry) if entry else None

    def update(self, key: str, index: int, generation: Generation) -> None:
        if index < 0:
            raise ValueError("index must be >= 0")
        with self._lock:
            entry = self._cache.get(key, ())
            if index > len(entry):
                raise ValueError(f"Cannot store candidate {index} under a key holding {len(entry)}")
            if index == len(entry):
                updated = (*entry, generation)
            else:
                updated = (*entry[:index], generation, *entry[index + 1:])
            self._store_unlocked(key, updated)

    def update_all(self, key: str, generations: Sequence[Generation]) -> None:
        """Replace all candidates under `key` in one step."""
        with self._lock:
            self._store_unlocked(key, tuple(generations))

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def _store_unlocked(self, key: str, entry: tuple[Generation, ...]) -> None:
        """Caller must hold lock."""
        if key not in self._cache and self._max_size is not None:
            while len(self._cache) >= self._max_size:
                del self._cache[next(iter(self._cache))]
        self._cache[key] = entry

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> dict[str, object]:
        """Get cache statistics for monitoring."""
        with self._lock:
            return {
                "keys": len(self._cache),
                "generations": sum(len(v) for v in self._cache.values()),
                "max_size": self._max_size,
            }


# Global cache instance
_cache: BaseCache | None = None
_cache_lock = threading.Lock()


def get_cache() -> BaseCache:
    """Get the process-wide cache (creates an InMemoryCache on first use)."""
    global _cache
    if _cache is None:
        with _cache_lock:
            if _cache is None:
                from ..config import get_settings

                _cache = InMemoryCache(max_size=get_settings().cache.max_size)
    return _cache


def set_cache(cache: BaseCache) -> None:
    """Set a custom process-wide cache backend."""
    global _cache
    _cache = cache


def reset_cache() -> None:
    """Reset the process-wide cache (useful for testing)."""
    global _cache
    if isinstance(_cache, InMemoryCache):
        _cache.clear()
    _cache = None
