"""
Keyed mutual exclusion for customer creation.

Serializes find-or-create attempts that share a contact key. The store's
unique constraints remain the final arbiter; the lock only keeps
concurrent callers from racing into the same insert.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import LockError

from call_intel.config import LockBackend, get_settings
from call_intel.errors import ConflictError
from call_intel.logging_config import get_logger

logger = get_logger(__name__)


class KeyedLock(ABC):

    @abstractmethod
    def hold(self, key: str) -> AsyncContextManager[None]:
        """Async context manager holding the lock for ``key``."""


class LocalKeyedLock(KeyedLock):
    """asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self, timeout_seconds: float) -> None:
        self._timeout = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            await self._acquire(lock, key)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    async def _acquire(self, lock: asyncio.Lock, key: str) -> None:
        # asyncio.wait never cancels the attempt, so a lock granted while we
        # time out or get cancelled is released instead of leaked
        acquiring = asyncio.ensure_future(lock.acquire())
        try:
            await asyncio.wait({acquiring}, timeout=self._timeout)
        except asyncio.CancelledError:
            self._abandon(lock, acquiring)
            raise
        if not acquiring.done():
            self._abandon(lock, acquiring)
            raise ConflictError(f"timed out waiting for lock {key}")

    @staticmethod
    def _abandon(lock: asyncio.Lock, acquiring: asyncio.Future) -> None:
        if not acquiring.done():
            acquiring.cancel()
        elif not acquiring.cancelled() and acquiring.exception() is None:
            lock.release()


class RedisKeyedLock(KeyedLock):
    """Redis lock shared by every process; expires if the holder dies."""

    def __init__(self, redis: aioredis.Redis, timeout_seconds: float) -> None:
        self._redis = redis
        self._timeout = timeout_seconds

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"locks:{key}",
            timeout=self._timeout,
            blocking_timeout=self._timeout,
        )
        if not await lock.acquire():
            raise ConflictError(f"timed out waiting for lock {key}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("lock_expired_before_release", key=key)


def build_customer_lock() -> KeyedLock:
    settings = get_settings()
    if settings.customer_lock_backend == LockBackend.REDIS:
        from call_intel.services.ttl_store import get_redis

        return RedisKeyedLock(get_redis(), settings.lock_timeout_seconds)
    return LocalKeyedLock(settings.lock_timeout_seconds)
