# portal/adapters/outbound/cache/counter_store.py

"""
Redis-backed shared counter store for rate limiting.

Counters are plain integer keys with a TTL. Increment and expiry are sent
in one MULTI/EXEC transaction so concurrent requests on the same key never
lose updates.
"""

import logging
from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from portal.application.ports.outbound import ICounterStore
from portal.domain.exceptions import UpstreamUnavailableException

logger = logging.getLogger(__name__)


class RedisCounterStore(ICounterStore):

    def __init__(self, client: aioredis.Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[int]:
        """
        Current count for ``key``.

        Returns:
            The count, or None when the key does not exist or has expired

        Raises:
            UpstreamUnavailableException: If Redis cannot be reached
        """
        try:
            value = await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise UpstreamUnavailableException("Counter store read failed", original_error=e) from e
        return int(value) if value is not None else None

    async def increment(self, key: str, window_seconds: int) -> int:
        """
        Increment ``key`` and reset its expiry to ``window_seconds``.

        Returns:
            The count after the increment

        Raises:
            UpstreamUnavailableException: If Redis cannot be reached
        """
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window_seconds)
                count, _ = await pipe.execute()
        except (RedisError, OSError) as e:
            raise UpstreamUnavailableException("Counter store increment failed", original_error=e) from e
        return int(count)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Counter store health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
