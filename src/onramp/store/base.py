"""Abstract key-value store interface.

All cross-instance coordination (idempotency claims, gateway mappings,
rate-limit counters, position records) goes through this interface. The
concrete store (Redis in production, in-memory for local runs and tests)
is injected at startup based on StoreSettings.backend.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any


class KeyValueStore(ABC):
    """Abstract base class for the shared key-value store.

    Implementations must make ``set(..., nx=True)`` a single atomic
    set-if-absent so that concurrent callers on different instances
    observe exactly one winner.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the raw string value for ``key`` or None if absent/expired."""
        ...

    @abstractmethod
    async def set(
        self, key: str, value: str, ttl: int | None = None, nx: bool = False
    ) -> bool:
        """Store ``value`` under ``key``.

        Args:
            key: Store key.
            value: String value.
            ttl: Expiry in seconds, or None for no expiry.
            nx: Only set if the key does not already exist.

        Returns:
            True if the value was written, False if ``nx`` and the key existed.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter and return the new value."""
        ...

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> None:
        ...

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining time to live in seconds (-1 no expiry, -2 missing)."""
        ...

    @abstractmethod
    async def lpush(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def ltrim(self, key: str, start: int, stop: int) -> None:
        ...

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        ...

    @abstractmethod
    async def sadd(self, key: str, member: str) -> None:
        ...

    @abstractmethod
    async def smembers(self, key: str) -> set[str]:
        ...

    @abstractmethod
    async def srem(self, key: str, member: str) -> None:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def get_json(self, key: str) -> Any:
        """Return the JSON-decoded value for ``key`` or None."""
        raw = await self.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set_json(
        self, key: str, value: Any, ttl: int | None = None, nx: bool = False
    ) -> bool:
        return await self.set(key, json.dumps(value), ttl=ttl, nx=nx)
