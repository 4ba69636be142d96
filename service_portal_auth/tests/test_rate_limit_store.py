"""
Unit tests for rate limit stores.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as redis

from service_portal_auth.app.ratelimit import (
    InMemoryRateLimitStore,
    RateLimitRecord,
    RedisRateLimitStore,
    build_rate_limit_store,
)
from shared.test_helpers import FakeClock


class TestInMemoryRateLimitStore:
    """Test cases for InMemoryRateLimitStore."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return InMemoryRateLimitStore(clock)

    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        await store.put("ip", RateLimitRecord(count=2, last_attempt=10.0), ttl_seconds=60)

        record = await store.get("ip")

        assert record == RateLimitRecord(count=2, last_attempt=10.0, blocked=False)

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, store, clock):
        await store.put("ip", RateLimitRecord(count=1, last_attempt=clock.now()), ttl_seconds=60)

        clock.advance(60)

        assert await store.get("ip") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_write_sweeps_abandoned_entries(self, store, clock):
        for i in range(1000):
            await store.put(f"10.0.{i // 256}.{i % 256}", RateLimitRecord(count=1, last_attempt=clock.now()), 900)
        assert len(store) == 1000

        clock.advance(10_000)
        await store.put("1.2.3.4", RateLimitRecord(count=1, last_attempt=clock.now()), 900)

        assert len(store) == 1
        assert await store.get("1.2.3.4") is not None

    @pytest.mark.asyncio
    async def test_sweep_keeps_live_entries(self, clock):
        store = InMemoryRateLimitStore(clock, sweep_interval=30)
        await store.put("old", RateLimitRecord(count=1, last_attempt=clock.now()), 60)
        clock.advance(40)
        await store.put("recent", RateLimitRecord(count=1, last_attempt=clock.now()), 60)
        clock.advance(30)

        await store.put("new", RateLimitRecord(count=1, last_attempt=clock.now()), 60)

        assert len(store) == 2
        assert await store.get("old") is None
        assert await store.get("recent") is not None

    @pytest.mark.asyncio
    async def test_returned_record_is_a_copy(self, store):
        await store.put("ip", RateLimitRecord(count=1, last_attempt=1.0), ttl_seconds=60)

        record = await store.get("ip")
        record.count = 99

        assert (await store.get("ip")).count == 1

    @pytest.mark.asyncio
    async def test_delete_missing_key_is_noop(self, store):
        await store.delete("missing")

        assert await store.get("missing") is None


class TestRedisRateLimitStore:
    """Test cases for RedisRateLimitStore."""

    @pytest.fixture
    def store(self):
        return RedisRateLimitStore("redis://localhost:6379/0")

    @pytest.mark.asyncio
    async def test_put_uses_setex_with_prefixed_key(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis

            await store.put("1.2.3.4", RateLimitRecord(count=5, last_attempt=100.0, blocked=True), 900)

            key, ttl, value = mock_redis.setex.call_args.args
            assert key == "login_rate_limit:1.2.3.4"
            assert ttl == 900
            assert json.loads(value) == {"count": 5, "last_attempt": 100.0, "blocked": True}

    @pytest.mark.asyncio
    async def test_get_decodes_record(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.get.return_value = b'{"count": 3, "last_attempt": 42.5, "blocked": false}'

            record = await store.get("1.2.3.4")

            assert record == RateLimitRecord(count=3, last_attempt=42.5, blocked=False)
            mock_redis.get.assert_called_once_with("login_rate_limit:1.2.3.4")

    @pytest.mark.asyncio
    async def test_get_missing_key(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.get.return_value = None

            assert await store.get("1.2.3.4") is None

    @pytest.mark.asyncio
    async def test_corrupt_record_is_discarded(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.get.return_value = "not-json"

            assert await store.get("1.2.3.4") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_logged_not_raised(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_get_redis.side_effect = redis.ConnectionError("Redis connection failed")

            assert await store.get("1.2.3.4") is None
            await store.put("1.2.3.4", RateLimitRecord(count=1, last_attempt=1.0), 60)
            await store.delete("1.2.3.4")
            assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_delete(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis

            await store.delete("1.2.3.4")

            mock_redis.delete.assert_called_once_with("login_rate_limit:1.2.3.4")


def test_build_rate_limit_store_selects_backend():
    assert isinstance(build_rate_limit_store("memory", "redis://unused"), InMemoryRateLimitStore)
    assert isinstance(build_rate_limit_store("redis", "redis://localhost:6379/0"), RedisRateLimitStore)
