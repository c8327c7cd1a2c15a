"""
Redis Session Storage

Shares sessions between devices scanning the same table code.
Uses the asyncio client from redis-py; concurrent writers race with
last-write-wins, the repository's version guard drops stale writes.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ordersync.core.exceptions import BackendUnavailableError
from ordersync.services.sessions.base import BaseSessionStorage

logger = logging.getLogger(__name__)


class RedisSessionStorage(BaseSessionStorage):
    """Redis-backed storage; one string value per key."""

    def __init__(self, url: str, client: Optional[aioredis.Redis] = None):
        self.url = url
        self.client = client or aioredis.from_url(url, decode_responses=True)
        logger.info("RedisSessionStorage initialized")

    @property
    def backend_name(self) -> str:
        return "redis"

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self.client.get(key)
        except RedisError as e:
            logger.error(f"Redis GET {key} failed: {e}")
            raise BackendUnavailableError(f"Session store unavailable: {e}") from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self.client.set(key, value)
        except RedisError as e:
            logger.error(f"Redis SET {key} failed: {e}")
            raise BackendUnavailableError(f"Session store unavailable: {e}") from e

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self.client.delete(*keys)
        except RedisError as e:
            logger.error(f"Redis DEL failed: {e}")
            raise BackendUnavailableError(f"Session store unavailable: {e}") from e

    async def keys(self, prefix: str = "") -> List[str]:
        found = []
        try:
            async for key in self.client.scan_iter(match=f"{prefix}*"):
                found.append(key.decode("utf-8") if isinstance(key, bytes) else key)
        except RedisError as e:
            logger.error(f"Redis SCAN failed: {e}")
            raise BackendUnavailableError(f"Session store unavailable: {e}") from e
        return sorted(found)

    async def close(self) -> None:
        await self.client.aclose()
