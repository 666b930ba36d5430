"""
Keyed state with TTL-based expiry, held in Redis.

Short-lived per-user state (verification codes, notification payloads)
lives here instead of in process memory so every API and worker instance
sees the same values and expiry is enforced by Redis itself.
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Optional

import redis.asyncio as aioredis

from call_intel.config import get_settings
from call_intel.logging_config import get_logger

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_redis() -> aioredis.Redis:
    """Shared Redis connection pool for the process."""
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    logger.info("redis_client_initialized")
    return client


class KeyedTTLStore:
    """JSON values under ``<namespace>:<key>`` that expire after ``ttl_seconds``."""

    def __init__(self, redis: aioredis.Redis, namespace: str, ttl_seconds: int) -> None:
        self._redis = redis
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds

    def key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        await self._redis.set(
            self.key(key),
            json.dumps(value, default=str),
            ex=ttl_seconds or self.ttl_seconds,
        )

    async def get(self, key: str) -> Any:
        raw = await self._redis.get(self.key(key))
        return json.loads(raw) if raw is not None else None

    async def pop(self, key: str) -> Any:
        """Read and delete in one round trip."""
        raw = await self._redis.getdel(self.key(key))
        return json.loads(raw) if raw is not None else None

    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(self.key(key)))

    async def ttl(self, key: str) -> int:
        """Seconds until expiry; negative when the key is missing or has no TTL."""
        return await self._redis.ttl(self.key(key))
