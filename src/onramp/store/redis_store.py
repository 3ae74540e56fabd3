"""Redis-backed key-value store.

Uses a shared redis.asyncio connection pool. Every Redis failure is logged
and re-raised as StoreUnavailable so callers decide whether the operation
is fatal (position write before a charge) or degradable (gateway mapping,
metrics).
"""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Any, TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from onramp.config import StoreSettings
from onramp.exceptions import StoreUnavailable
from onramp.logging import get_logger
from onramp.store.base import KeyValueStore

logger = get_logger(__name__)

T = TypeVar("T")


class RedisStore(KeyValueStore):
    """KeyValueStore backed by Redis.

    Args:
        settings: Connection URL, pool size and socket timeouts.
        client: Pre-built client (tests inject a mock here).
    """

    def __init__(self, settings: StoreSettings, client: Redis | None = None) -> None:
        self._settings = settings
        self._pool: ConnectionPool | None = None
        if client is None:
            self._pool = ConnectionPool.from_url(
                settings.url,
                max_connections=settings.max_connections,
                decode_responses=True,
                socket_timeout=settings.socket_timeout,
                socket_connect_timeout=settings.socket_connect_timeout,
            )
            client = Redis(connection_pool=self._pool)
        self._client = client

    async def _call(self, op: str, key: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except RedisError as e:
            logger.warning("redis_operation_failed", op=op, key=key, error=str(e))
            raise StoreUnavailable(op=op, key=key) from e

    async def get(self, key: str) -> str | None:
        return await self._call("get", key, self._client.get(key))

    async def set(
        self, key: str, value: str, ttl: int | None = None, nx: bool = False
    ) -> bool:
        # SET key value NX EX ttl is a single round trip; None means NX lost
        result: Any = await self._call(
            "set", key, self._client.set(key, value, ex=ttl, nx=nx)
        )
        return bool(result)

    async def delete(self, key: str) -> None:
        await self._call("delete", key, self._client.delete(key))

    async def incr(self, key: str) -> int:
        return int(await self._call("incr", key, self._client.incr(key)))

    async def expire(self, key: str, seconds: int) -> None:
        await self._call("expire", key, self._client.expire(key, seconds))

    async def ttl(self, key: str) -> int:
        return int(await self._call("ttl", key, self._client.ttl(key)))

    async def lpush(self, key: str, value: str) -> None:
        await self._call("lpush", key, self._client.lpush(key, value))

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        await self._call("ltrim", key, self._client.ltrim(key, start, stop))

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        return list(await self._call("lrange", key, self._client.lrange(key, start, stop)))

    async def sadd(self, key: str, member: str) -> None:
        await self._call("sadd", key, self._client.sadd(key, member))

    async def smembers(self, key: str) -> set[str]:
        return set(await self._call("smembers", key, self._client.smembers(key)))

    async def srem(self, key: str, member: str) -> None:
        await self._call("srem", key, self._client.srem(key, member))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()
        if self._pool is not None:
            await self._pool.aclose()
        logger.info("redis_connection_closed")
