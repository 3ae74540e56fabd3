"""Fixed-window rate limiter backed by the shared store.

The first request in a window creates ``rate_limit:{endpoint}:{identity}``
with the window as TTL; later requests increment it. Windows reset only by
expiry. A store outage fails open: intake stays available and the outage is
logged.
"""

import time
from collections.abc import Callable

from onramp.exceptions import StoreUnavailable
from onramp.logging import get_logger
from onramp.models import RateLimitResult
from onramp.store import keys
from onramp.store.base import KeyValueStore

logger = get_logger(__name__)


class RateLimiter:
    """Per-identity request counter.

    Args:
        store: Shared key-value store.
        clock: Wall clock in Unix seconds, used for ``reset_at``.
    """

    def __init__(
        self, store: KeyValueStore, clock: Callable[[], float] = time.time
    ) -> None:
        self._store = store
        self._clock = clock

    async def check_and_increment(
        self,
        endpoint: str,
        identity: str,
        max_requests: int,
        window_seconds: int,
    ) -> RateLimitResult:
        """Count this request against the identity's window.

        Args:
            endpoint: Logical endpoint name (e.g. "process-payment").
            identity: Caller identity, usually the client IP.
            max_requests: Requests allowed per window.
            window_seconds: Window length.

        Returns:
            RateLimitResult; ``allowed`` is False once the count exceeds
            ``max_requests``.
        """
        key = keys.rate_limit(endpoint, identity)
        now = self._clock()

        try:
            created = await self._store.set(key, "1", ttl=window_seconds, nx=True)
            if created:
                count, ttl = 1, window_seconds
            else:
                count = await self._store.incr(key)
                ttl = await self._store.ttl(key)
                if ttl < 0:
                    # Key expired between the NX write and INCR and came back without a TTL
                    await self._store.expire(key, window_seconds)
                    ttl = window_seconds
        except StoreUnavailable:
            logger.warning(
                "rate_limit_store_unavailable",
                endpoint=endpoint,
                identity=identity,
            )
            return RateLimitResult(
                allowed=True,
                remaining=max_requests,
                reset_at=now + window_seconds,
                limit=max_requests,
            )

        allowed = count <= max_requests
        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                endpoint=endpoint,
                identity=identity,
                count=count,
                limit=max_requests,
            )
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, max_requests - count),
            reset_at=now + ttl,
            limit=max_requests,
        )
