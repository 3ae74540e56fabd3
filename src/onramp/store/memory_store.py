"""In-process key-value store for local development and tests.

Implements the same KeyValueStore ABC as RedisStore with Redis semantics
for TTLs, NX writes, counters, lists and sets. A single asyncio.Lock makes
each operation atomic within the event loop. It does not coordinate across
processes; multi-instance deployments must use Redis.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

from onramp.store.base import KeyValueStore


class MemoryStore(KeyValueStore):
    """Dict-backed store with lazy expiry.

    Args:
        clock: Time source in seconds (tests inject a fake clock).
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expires: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _purge(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def _set_ttl(self, key: str, ttl: int | None) -> None:
        if ttl is None:
            self._expires.pop(key, None)
        else:
            self._expires[key] = self._clock() + ttl

    async def get(self, key: str) -> str | None:
        async with self._lock:
            self._purge(key)
            value = self._data.get(key)
            return None if value is None else str(value)

    async def set(
        self, key: str, value: str, ttl: int | None = None, nx: bool = False
    ) -> bool:
        async with self._lock:
            self._purge(key)
            if nx and key in self._data:
                return False
            self._data[key] = value
            self._set_ttl(key, ttl)
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    async def incr(self, key: str) -> int:
        async with self._lock:
            self._purge(key)
            value = int(self._data.get(key, 0)) + 1
            self._data[key] = str(value)
            return value

    async def expire(self, key: str, seconds: int) -> None:
        async with self._lock:
            self._purge(key)
            if key in self._data:
                self._set_ttl(key, seconds)

    async def ttl(self, key: str) -> int:
        async with self._lock:
            self._purge(key)
            if key not in self._data:
                return -2
            deadline = self._expires.get(key)
            if deadline is None:
                return -1
            return max(0, int(round(deadline - self._clock())))

    async def lpush(self, key: str, value: str) -> None:
        async with self._lock:
            self._purge(key)
            self._data.setdefault(key, []).insert(0, value)

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        async with self._lock:
            self._purge(key)
            items = self._data.get(key)
            if items is not None:
                self._data[key] = items[start : _slice_stop(stop)]

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        async with self._lock:
            self._purge(key)
            return list(self._data.get(key, [])[start : _slice_stop(stop)])

    async def sadd(self, key: str, member: str) -> None:
        async with self._lock:
            self._purge(key)
            self._data.setdefault(key, set()).add(member)

    async def smembers(self, key: str) -> set[str]:
        async with self._lock:
            self._purge(key)
            return set(self._data.get(key, set()))

    async def srem(self, key: str, member: str) -> None:
        async with self._lock:
            self._purge(key)
            members = self._data.get(key)
            if members is not None:
                members.discard(member)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()
            self._expires.clear()


def _slice_stop(stop: int) -> int | None:
    """Redis list ranges are inclusive and -1 means the last element."""
    return None if stop == -1 else stop + 1
