"""Tests for per provider-day arbitration."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from clinicq.core.exceptions import BusyException
from clinicq.core.locks import LocalLockManager, RedisLockManager, provider_day_key


def test_provider_day_key():
    provider_id = uuid4()
    key = provider_day_key(provider_id, date(2026, 3, 2))
    assert key == f"provider-day:{provider_id}:2026-03-02"


@pytest.mark.asyncio
async def test_local_lock_times_out_as_busy():
    locks = LocalLockManager(timeout=0.05)
    key = provider_day_key(uuid4(), date(2026, 3, 2))

    async with locks.hold(key):
        with pytest.raises(BusyException) as exc_info:
            async with locks.hold(key):
                pass

    assert exc_info.value.status_code == 503
    assert exc_info.value.context["lock"] == key


@pytest.mark.asyncio
async def test_local_lock_serializes_same_key():
    locks = LocalLockManager(timeout=1.0)
    events: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("provider-day:x:2026-03-02"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


@pytest.mark.asyncio
async def test_local_lock_independent_keys_do_not_block():
    locks = LocalLockManager(timeout=0.05)

    async with locks.hold("provider-day:a:2026-03-02"):
        async with locks.hold("provider-day:b:2026-03-02"):
            assert set(locks.held_keys()) == {
                "provider-day:a:2026-03-02",
                "provider-day:b:2026-03-02",
            }


@pytest.mark.asyncio
async def test_local_lock_releases_entries():
    locks = LocalLockManager(timeout=0.05)

    async with locks.hold("provider-day:a:2026-03-02"):
        pass
    with pytest.raises(RuntimeError):
        async with locks.hold("provider-day:a:2026-03-02"):
            raise RuntimeError("boom")

    assert locks.held_keys() == []


@pytest.mark.asyncio
async def test_redis_lock_busy_when_not_acquired():
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=False)
    client = MagicMock()
    client.lock.return_value = lock

    locks = RedisLockManager(client, timeout=0.5, lease=30)

    with pytest.raises(BusyException):
        async with locks.hold("provider-day:a:2026-03-02"):
            pass

    client.lock.assert_called_once_with(
        "lock:provider-day:a:2026-03-02", timeout=30, blocking_timeout=0.5
    )


@pytest.mark.asyncio
async def test_redis_lock_released_after_use():
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=True)
    lock.release = AsyncMock()
    client = MagicMock()
    client.lock.return_value = lock

    locks = RedisLockManager(client, timeout=0.5, lease=30)
    async with locks.hold("provider-day:a:2026-03-02"):
        lock.release.assert_not_called()

    lock.release.assert_awaited_once()
