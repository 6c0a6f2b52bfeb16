"""Tests for Redis caching of provider schedules."""

from datetime import time
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from clinicq.core.redis_client import CacheManager
from clinicq.services.provider_service import ProviderService


def test_cache_manager_get_json():
    """Test CacheManager get_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    # Test cache miss
    mock_redis.get.return_value = None
    result = cache_manager.get_json("test_key")
    assert result is None
    mock_redis.get.assert_called_once_with("test_key")

    # Test cache hit
    mock_redis.reset_mock()
    mock_redis.get.return_value = '{"slot_duration_minutes": 30}'
    result = cache_manager.get_json("test_key")
    assert result == {"slot_duration_minutes": 30}


def test_cache_manager_set_json():
    """Test CacheManager set_json method."""
    mock_redis = MagicMock()
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.set_json("test_key", {"a": 1}) is True
    mock_redis.set.assert_called_once()

    mock_redis.reset_mock()
    assert cache_manager.set_json("test_key", {"a": 1}, ttl=300) is True
    mock_redis.setex.assert_called_once_with("test_key", 300, '{"a": 1}')


def test_cache_manager_swallows_backend_errors():
    mock_redis = MagicMock()
    mock_redis.get.side_effect = ConnectionError("redis down")
    mock_redis.delete.side_effect = ConnectionError("redis down")
    cache_manager = CacheManager(redis_client=mock_redis)

    assert cache_manager.get_json("test_key") is None
    assert cache_manager.delete("test_key") is False


@pytest.mark.asyncio
async def test_schedule_cached_and_invalidated(db_session, schedule_data):
    """Schedules are served from cache and invalidated on upsert."""
    store: dict[str, str] = {}
    mock_redis = MagicMock()
    mock_redis.get.side_effect = store.get
    mock_redis.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    mock_redis.delete.side_effect = lambda key: store.pop(key, None)

    providers = ProviderService(db_session, cache_manager=CacheManager(mock_redis), cache_ttl=60)
    provider_id = uuid4()
    key = f"provider_schedule:{provider_id}"

    await providers.upsert_schedule(provider_id, schedule_data)
    assert key in store

    mock_redis.setex.reset_mock()
    cached = await providers.get_schedule(provider_id)
    assert cached.working_hours.start == time(9, 0)
    assert cached.bookable
    mock_redis.setex.assert_not_called()

    await providers.upsert_schedule(
        provider_id, schedule_data.model_copy(update={"slot_duration_minutes": 20})
    )
    refreshed = await providers.get_schedule(provider_id)
    assert refreshed.slot_duration_minutes == 20
