"""
Unit tests for the cache facade.
"""

import asyncio

import pytest
from unittest.mock import patch

from service_cache.app.cache.cache_service import CacheService
from service_cache.app.cache.memory_cache import MemoryCache
from service_cache.app.cache.options import CacheOptions
from shared.config import BaseConfig
from shared.errors import CacheBackendUnavailableError
from shared.metrics import MetricsCollector
from shared.test_helpers import ManualClock, TestDataFactory, create_failing_redis, create_redis_stub


class TestCacheServiceWithoutRemote:
    """The facade with no remote tier configured."""

    @pytest.fixture
    def clock(self):
        return ManualClock()

    @pytest.fixture
    def cache_service(self, clock):
        """Create CacheService instance with only the local tier."""
        return CacheService(clock=clock)

    @pytest.mark.asyncio
    async def test_memory_cache_created_lazily(self, cache_service):
        assert cache_service.remote is None
        assert cache_service.memory_cache_created is False

        await cache_service.get("anything")

        assert cache_service.memory_cache_created is True
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_round_trip(self, cache_service):
        recipes = TestDataFactory.create_test_recipes()

        await cache_service.set("all", recipes, CacheOptions(prefix="recipes"))

        assert await cache_service.get("all", CacheOptions(prefix="recipes")) == recipes
        assert await cache_service.exists("all", CacheOptions(prefix="recipes")) is True
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_expiry(self, cache_service, clock):
        await cache_service.set("k", "v", CacheOptions(ttl=10))

        clock.advance(11)

        assert await cache_service.get("k") is None
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_ttl_operations(self, cache_service):
        await cache_service.set("k", "v", CacheOptions(ttl=10))

        assert await cache_service.get_ttl("k") == 10
        assert await cache_service.extend_ttl("k", 500) is True
        assert await cache_service.get_ttl("k") == 500
        assert await cache_service.get_ttl("missing") == -2
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_pattern_operations(self, cache_service):
        for key in ["user:1", "user:2", "order:1"]:
            await cache_service.set(key, key)

        assert sorted(await cache_service.get_keys("user:*")) == ["user:1", "user:2"]
        assert await cache_service.delete_by_pattern("user:*") == 2
        assert await cache_service.get_keys("*") == ["order:1"]
        assert await cache_service.delete("order:1") is True
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_flush_all_clears_local_tier(self, cache_service):
        await cache_service.set("k", "v")

        await cache_service.flush_all()

        assert await cache_service.get_keys("*") == []
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_flush_all_before_first_use(self, cache_service):
        await cache_service.flush_all()

        assert cache_service.memory_cache_created is False

    @pytest.mark.asyncio
    async def test_stats_from_local_tier(self, cache_service):
        await cache_service.set("k", "v")

        stats = await cache_service.get_stats()

        assert stats.total_keys == 1
        assert stats.connected_clients == 1
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_health_check_without_remote(self, cache_service):
        assert await cache_service.health_check() is False

    @pytest.mark.asyncio
    async def test_close_stops_sweep_task(self, cache_service):
        await cache_service.set("k", "v")
        task = cache_service._memory_cache.cleanup_task

        await cache_service.close()

        assert task.cancelled() or task.done()

    @pytest.mark.asyncio
    async def test_use_after_close_gets_fresh_local_tier(self, cache_service):
        """A local tier created after close runs its own sweep."""
        await cache_service.set("k", "v")
        await cache_service.close()

        assert cache_service.memory_cache_created is False

        await cache_service.set("k2", "v2")

        assert await cache_service.get("k") is None
        assert await cache_service.get("k2") == "v2"
        assert cache_service._memory_cache.running is True
        assert not cache_service._memory_cache.cleanup_task.done()
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_values_are_isolated_from_callers(self, cache_service):
        recipe = TestDataFactory.create_test_recipes()[0]
        await cache_service.set("recipe:1", recipe)

        recipe["title"] = "Changed"
        returned = await cache_service.get("recipe:1")
        returned["id"] = 999

        assert await cache_service.get("recipe:1") == TestDataFactory.create_test_recipes()[0]
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_unserializable_value_reads_as_miss(self, cache_service):
        await cache_service.set("k", object())

        assert await cache_service.get("k") is None
        assert await cache_service.exists("k") is False
        await cache_service.close()


class TestCacheServiceWithRemote:
    """The facade in front of a working remote tier."""

    @pytest.fixture
    def mock_redis(self):
        return create_redis_stub()

    @pytest.fixture
    def cache_service(self, mock_redis):
        return CacheService(mock_redis, default_ttl=600, max_keys=100)

    @pytest.mark.asyncio
    async def test_calls_go_to_remote(self, cache_service, mock_redis):
        mock_redis.get.return_value = '{"id": 1}'

        await cache_service.set("1", {"id": 1}, CacheOptions(prefix="blog"))
        result = await cache_service.get("1", CacheOptions(prefix="blog"))

        assert result == {"id": 1}
        mock_redis.setex.assert_called_once_with("blog:1", 600, '{"id": 1}')
        assert cache_service.memory_cache_created is False

    @pytest.mark.asyncio
    async def test_stats_from_remote(self, cache_service, mock_redis):
        mock_redis.dbsize.return_value = 4

        stats = await cache_service.get_stats()

        assert stats.total_keys == 4
        assert stats.memory_usage == "1.00M"

    @pytest.mark.asyncio
    async def test_flush_all_remote_only(self, cache_service, mock_redis):
        await cache_service.flush_all()

        mock_redis.flushdb.assert_called_once()
        assert cache_service.memory_cache_created is False

    @pytest.mark.asyncio
    async def test_health_check(self, cache_service):
        assert await cache_service.health_check() is True

    @pytest.mark.asyncio
    async def test_close_closes_client(self, cache_service, mock_redis):
        await cache_service.close()

        mock_redis.aclose.assert_called_once()


class TestCacheServiceFallback:
    """The facade when the remote tier is unreachable."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("cache")

    @pytest.fixture
    def failing_redis(self):
        return create_failing_redis()

    @pytest.fixture
    def cache_service(self, failing_redis, metrics):
        return CacheService(failing_redis, metrics=metrics)

    @pytest.mark.asyncio
    async def test_fallback_is_transparent(self, cache_service):
        """Callers see the same results as with a healthy backend."""
        categories = TestDataFactory.create_test_categories()

        await cache_service.set("all", categories, CacheOptions(prefix="categories"))

        assert await cache_service.get("all", CacheOptions(prefix="categories")) == categories
        assert await cache_service.exists("all", CacheOptions(prefix="categories")) is True
        assert await cache_service.get_keys("categories:*") == ["categories:all"]
        assert await cache_service.delete_by_pattern("categories:*") == 1
        assert await cache_service.get("all", CacheOptions(prefix="categories")) is None
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_ttl_operations_fall_back(self, cache_service):
        await cache_service.set("k", "v", CacheOptions(ttl=30, prefix="blog"))

        assert await cache_service.get_ttl("k", CacheOptions(prefix="blog")) == 30
        assert await cache_service.extend_ttl("k", 300, CacheOptions(prefix="blog")) is True
        assert await cache_service.get_ttl("k", CacheOptions(prefix="blog")) == 300
        assert await cache_service.get_ttl("missing") == -2
        assert await cache_service.extend_ttl("missing", 300) is False
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_expired_entry_not_revived_during_fallback(self, failing_redis):
        clock = ManualClock()
        cache_service = CacheService(failing_redis, clock=clock)
        await cache_service.set("k", "stale", CacheOptions(ttl=1))

        clock.advance(5)

        assert await cache_service.extend_ttl("k", 100) is False
        assert await cache_service.get("k") is None
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_fallback_counted(self, cache_service, metrics):
        await cache_service.get("k")
        await cache_service.get("k")
        await cache_service.delete("k")

        assert metrics.get_sample_value("cache_fallbacks_total", {"operation": "get"}) == 2
        assert metrics.get_sample_value("cache_fallbacks_total", {"operation": "delete"}) == 1
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_local_tier_created_once(self, cache_service):
        """Concurrent fallbacks share a single local tier."""
        with patch(
            "service_cache.app.cache.cache_service.MemoryCache", wraps=MemoryCache
        ) as memory_cache_cls:
            await asyncio.gather(*(cache_service.set(f"k{index}", index) for index in range(20)))
            await cache_service.get("k0")

        assert memory_cache_cls.call_count == 1
        assert await cache_service.get("k19") == 19
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_remote_retried_on_every_call(self, cache_service, failing_redis):
        await cache_service.get("a")
        await cache_service.get("b")

        assert failing_redis.get.call_count == 2
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_recovered_remote_is_used_again(self, cache_service, failing_redis):
        await cache_service.set("k", "local")

        failing_redis.get.side_effect = None
        failing_redis.get.return_value = '"remote"'

        assert await cache_service.get("k") == "remote"
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_flush_all_raises_when_remote_fails(self, cache_service):
        await cache_service.set("k", "v")

        with pytest.raises(CacheBackendUnavailableError) as exc_info:
            await cache_service.flush_all()

        assert exc_info.value.operation == "flush_all"
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_flush_all_clears_local_tier_after_remote_flush(self, cache_service, failing_redis):
        await cache_service.set("k", "v")
        failing_redis.flushdb.side_effect = None

        await cache_service.flush_all()

        assert len(cache_service._memory_cache) == 0
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_stats_from_local_tier(self, cache_service):
        stats = await cache_service.get_stats()

        assert stats.connected_clients == 1
        await cache_service.close()

    @pytest.mark.asyncio
    async def test_health_check_reports_failure(self, cache_service):
        assert await cache_service.health_check() is False


class TestCacheServiceFromConfig:
    """Test cases for building the facade from configuration."""

    def test_disabled_remote(self):
        config = BaseConfig(redis_enabled=False, redis_ttl=120, memory_cache_max_keys=50)

        cache_service = CacheService.from_config(config)

        assert cache_service.remote is None
        assert cache_service.default_ttl == 120
        assert cache_service.memory_max_keys == 50

    def test_enabled_remote(self):
        config = BaseConfig(redis_enabled=True, redis_host="localhost", redis_max=25)

        cache_service = CacheService.from_config(config)

        assert cache_service.remote is not None
        assert cache_service.remote.max_keys == 25
