# archive_streams/cache.py

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from .config import logger

T = TypeVar("T")


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """In-process memoization for calls to external collaborators.

    Entries are independent and expire on their own; there is no explicit
    teardown. Concurrent refreshes of the same key are last-writer-wins.
    Producer exceptions propagate and are never stored.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 2048,
    ) -> None:
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if len(self._entries) >= self._max_entries and key not in self._entries:
            self.purge_expired()
            if len(self._entries) >= self._max_entries:
                # Still full of live entries: evict the one closest to expiry.
                oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
                self._entries.pop(oldest, None)
        self._entries[key] = CacheEntry(value, self._clock() + ttl_seconds)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"[CACHE] Purged {len(expired)} expired entries")
        return len(expired)

    async def get_or_compute(
        self, key: str, ttl_seconds: float, producer: Callable[[], Awaitable[T]]
    ) -> T:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at > self._clock():
            return entry.value
        value = await producer()
        self.set(key, value, ttl_seconds)
        return value


class NullCache(TTLCache):
    """Cache that never stores anything; handy for tests."""

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        return None

    async def get_or_compute(
        self, key: str, ttl_seconds: float, producer: Callable[[], Awaitable[T]]
    ) -> T:
        return await producer()
