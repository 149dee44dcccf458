"""
Redis-backed remote cache tier.

Backend failures are raised as ``CacheBackendUnavailableError`` so the cache
facade can serve the call from the local tier instead.
"""

import asyncio
import math
from typing import Any, List, Optional, TYPE_CHECKING

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shared.errors import CacheBackendUnavailableError, CacheSerializationError
from shared.logging import get_logger
from .options import CacheOptions, CacheStats, build_key, dump_value, load_value

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL = 3600
DEFAULT_MAX_KEYS = 100
EVICTION_RATIO = 0.1

BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)
CONNECTION_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)


def to_redis_pattern(pattern: str) -> str:
    """Escape Redis glob metacharacters other than ``*``."""
    escaped = []
    for char in str(pattern):
        if char in "\\?[]":
            escaped.append("\\" + char)
        else:
            escaped.append(char)
    return "".join(escaped)


class RedisCache:
    """Remote cache tier with the same operation set as the local one."""

    def __init__(
        self,
        client: redis.Redis,
        default_ttl: int = DEFAULT_TTL,
        max_keys: int = DEFAULT_MAX_KEYS,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.redis = client
        self.default_ttl = default_ttl
        self.max_keys = max_keys
        self.metrics = metrics
        self.logger = get_logger("cache.redis")

    async def set(self, key: str, value: Any, options: Optional[CacheOptions] = None) -> bool:
        """Store a value; returns False when it cannot be serialized."""
        options = options or CacheOptions()
        ttl = options.ttl or self.default_ttl
        cache_key = build_key(key, options.prefix)

        try:
            payload = dump_value(value)
        except CacheSerializationError as e:
            self.logger.warning("Skipping cache write", key=cache_key, error=e.message)
            self._count_error("set")
            return False

        try:
            await self._check_max_keys()
            await self.redis.setex(cache_key, ttl, payload)
            self.logger.debug("Cached value", key=cache_key, ttl=ttl)
            return True
        except BACKEND_ERRORS as e:
            raise await self._unavailable("set", e) from e

    async def get(self, key: str, options: Optional[CacheOptions] = None) -> Optional[Any]:
        options = options or CacheOptions()
        cache_key = build_key(key, options.prefix)

        try:
            cached_data = await self.redis.get(cache_key)
        except BACKEND_ERRORS as e:
            raise await self._unavailable("get", e) from e

        if cached_data is None:
            self._count("cache_misses_total")
            return None

        try:
            value = load_value(cached_data)
        except (TypeError, ValueError) as e:
            self.logger.warning("Discarding undecodable cache value", key=cache_key, error=str(e))
            self._count_error("get")
            return None

        self._count("cache_hits_total")
        return value

    async def delete(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        options = options or CacheOptions()
        try:
            return await self.redis.delete(build_key(key, options.prefix)) > 0
        except BACKEND_ERRORS as e:
            raise await self._unavailable("delete", e) from e

    async def delete_by_pattern(self, pattern: str) -> int:
        try:
            keys = await self.redis.keys(to_redis_pattern(pattern))
            if not keys:
                return 0

            deleted = await self.redis.delete(*keys)
            self.logger.info("Cleared cache pattern", pattern=pattern, keys_count=deleted)
            return deleted
        except BACKEND_ERRORS as e:
            raise await self._unavailable("delete_by_pattern", e) from e

    async def exists(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        options = options or CacheOptions()
        try:
            return await self.redis.exists(build_key(key, options.prefix)) == 1
        except BACKEND_ERRORS as e:
            raise await self._unavailable("exists", e) from e

    async def get_ttl(self, key: str, options: Optional[CacheOptions] = None) -> int:
        """Remaining seconds as reported by Redis (-2 absent, -1 no expiry)."""
        options = options or CacheOptions()
        try:
            return await self.redis.ttl(build_key(key, options.prefix))
        except BACKEND_ERRORS as e:
            raise await self._unavailable("get_ttl", e) from e

    async def extend_ttl(self, key: str, ttl: int, options: Optional[CacheOptions] = None) -> bool:
        options = options or CacheOptions()
        try:
            return bool(await self.redis.expire(build_key(key, options.prefix), ttl))
        except BACKEND_ERRORS as e:
            raise await self._unavailable("extend_ttl", e) from e

    async def get_keys(self, pattern: str) -> List[str]:
        try:
            return list(await self.redis.keys(to_redis_pattern(pattern)))
        except BACKEND_ERRORS as e:
            raise await self._unavailable("get_keys", e) from e

    async def flush_all(self) -> None:
        try:
            await self.redis.flushdb()
            self.logger.info("Remote cache flushed")
        except BACKEND_ERRORS as e:
            raise await self._unavailable("flush_all", e) from e

    async def get_stats(self) -> CacheStats:
        """Statistics from the server's own INFO and DBSIZE."""
        try:
            info = await self.redis.info()
            total_keys = await self.redis.dbsize()
        except BACKEND_ERRORS as e:
            raise await self._unavailable("get_stats", e) from e

        return CacheStats(
            total_keys=total_keys,
            memory_usage=str(info.get("used_memory_human", "Unknown")),
            connected_clients=int(info.get("connected_clients", 0)),
        )

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except BACKEND_ERRORS:
            return False

    async def close(self):
        """Close the Redis client."""
        await self.redis.aclose()
        self.logger.info("Remote cache client closed")

    async def _check_max_keys(self):
        """Evict the soonest-expiring keys when the server holds too many.

        Best effort: any failure here is logged and the write proceeds.
        """
        try:
            current_keys = await self.redis.dbsize()
            if current_keys < self.max_keys:
                return

            keys = await self.redis.keys("*")
            ttls = await asyncio.gather(*(self.redis.ttl(key) for key in keys))
            ranked = sorted(zip(keys, ttls), key=lambda item: item[1])

            to_evict = [key for key, _ in ranked[:math.ceil(self.max_keys * EVICTION_RATIO)]]
            if to_evict:
                await self.redis.delete(*to_evict)
                if self.metrics:
                    self.metrics.increment_counter("cache_evictions_total", amount=len(to_evict), tier="remote")
                self.logger.info("Evicted soonest-expiring keys", count=len(to_evict), max_keys=self.max_keys)
        except BACKEND_ERRORS as e:
            self.logger.warning("Remote key ceiling check failed", error=str(e))

    async def _unavailable(self, operation: str, error: Exception) -> CacheBackendUnavailableError:
        """Log a backend failure and build the error the facade falls back on."""
        self.logger.warning("Remote cache operation failed", operation=operation, error=str(error))
        self._count_error(operation)

        if isinstance(error, CONNECTION_ERRORS):
            # Drop pooled connections; the next command reconnects from scratch.
            try:
                await self.redis.connection_pool.disconnect()
            except BACKEND_ERRORS as disconnect_error:
                self.logger.debug("Disconnect after failure also failed", error=str(disconnect_error))

        return CacheBackendUnavailableError(operation, str(error) or type(error).__name__)

    def _count(self, metric_name: str):
        if self.metrics:
            self.metrics.increment_counter(metric_name, tier="remote")

    def _count_error(self, operation: str):
        if self.metrics:
            self.metrics.increment_counter("cache_errors_total", tier="remote", operation=operation)
