"""Per provider-day arbitration for writes that touch capacity, tokens or positions."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import date
from functools import lru_cache
from typing import Protocol
from uuid import UUID

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockError

from clinicq.config import settings
from clinicq.core.exceptions import BusyException
from clinicq.core.redis_client import get_async_redis_client

logger = structlog.get_logger(__name__)


def provider_day_key(provider_id: UUID, day: date) -> str:
    """Arbitration key shared by reservations and token assignment of one provider-day."""
    return f"provider-day:{provider_id}:{day.isoformat()}"


class LockManager(Protocol):
    """Serializes writers per key while unrelated keys proceed in parallel."""

    def hold(self, key: str) -> AbstractAsyncContextManager[None]: ...


class LocalLockManager:
    """In-process single-writer arbitration, one asyncio lock per key."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                async with asyncio.timeout(self.timeout):
                    await lock.acquire()
            except TimeoutError:
                logger.warning("lock_acquire_timeout", key=key, timeout=self.timeout)
                raise BusyException(context={"lock": key, "timeout_seconds": self.timeout})

            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def held_keys(self) -> list[str]:
        """Keys with at least one holder or waiter."""
        return list(self._locks)


class RedisLockManager:
    """Cross-process arbitration through Redis locks."""

    def __init__(self, client: aioredis.Redis, timeout: float, lease: float):
        self.client = client
        self.timeout = timeout
        self.lease = lease

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self.client.lock(
            f"lock:{key}",
            timeout=self.lease,
            blocking_timeout=self.timeout,
        )
        if not await lock.acquire():
            logger.warning("lock_acquire_timeout", key=key, timeout=self.timeout, backend="redis")
            raise BusyException(context={"lock": key, "timeout_seconds": self.timeout})

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Lease expired while held; the next writer may already own the key.
                logger.error("lock_release_failed", key=key, error=str(e))


@lru_cache
def get_lock_manager() -> LockManager:
    """Get the process-wide lock manager for the configured backend."""
    if settings.uses_redis_locks:
        return RedisLockManager(
            get_async_redis_client(),
            timeout=settings.lock_timeout_seconds,
            lease=settings.lock_lease_seconds,
        )
    return LocalLockManager(timeout=settings.lock_timeout_seconds)
