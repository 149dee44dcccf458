"""
Cache facade consumed by the rest of the platform.

Every call goes to the remote tier first. When no remote tier is configured,
or the remote call fails, the call is served by a local ``MemoryCache`` that is
created on first use and kept for the life of the service. The two tiers never
share entries.
"""

import time
from typing import Any, Awaitable, Callable, List, Optional, TypeVar, TYPE_CHECKING

import redis.asyncio as redis

from shared.errors import CacheBackendUnavailableError
from shared.logging import get_logger
from .memory_cache import MemoryCache, DEFAULT_CLEANUP_INTERVAL
from .options import CacheOptions, CacheStats
from .redis_cache import RedisCache
from .redis_provider import create_redis_client

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig
    from shared.metrics import MetricsCollector


T = TypeVar("T")


class CacheService:
    """Remote-first cache with a lazily created local fallback tier."""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        *,
        default_ttl: int = 3600,
        max_keys: int = 100,
        memory_max_keys: int = 1000,
        memory_cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = get_logger("cache.service")
        self.metrics = metrics
        self.default_ttl = default_ttl
        self.memory_max_keys = memory_max_keys
        self.memory_cleanup_interval = memory_cleanup_interval
        self._clock = clock

        self.remote: Optional[RedisCache] = None
        if redis_client is not None:
            self.remote = RedisCache(redis_client, default_ttl, max_keys, metrics=metrics)

        self._memory_cache: Optional[MemoryCache] = None

    @classmethod
    def from_config(cls, config: "BaseConfig", metrics: Optional["MetricsCollector"] = None) -> "CacheService":
        """Build the facade from service configuration."""
        return cls(
            create_redis_client(config),
            default_ttl=config.redis_ttl,
            max_keys=config.redis_max,
            memory_max_keys=config.memory_cache_max_keys,
            memory_cleanup_interval=config.memory_cache_cleanup_interval,
            metrics=metrics,
        )

    @property
    def memory_cache_created(self) -> bool:
        return self._memory_cache is not None

    async def set(self, key: str, value: Any, options: Optional[CacheOptions] = None) -> None:
        """Store a value under ``key``."""
        await self._dispatch(
            "set",
            lambda tier: tier.set(key, value, options),
        )

    async def get(self, key: str, options: Optional[CacheOptions] = None) -> Optional[Any]:
        """Return the cached value or None."""
        return await self._dispatch("get", lambda tier: tier.get(key, options))

    async def delete(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        return await self._dispatch("delete", lambda tier: tier.delete(key, options))

    async def delete_by_pattern(self, pattern: str) -> int:
        """Delete every key matching a ``*`` glob; returns the count removed."""
        return await self._dispatch("delete_by_pattern", lambda tier: tier.delete_by_pattern(pattern))

    async def exists(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        return await self._dispatch("exists", lambda tier: tier.exists(key, options))

    async def get_ttl(self, key: str, options: Optional[CacheOptions] = None) -> int:
        """Seconds remaining; -2 when absent, -1 when expired or without expiry."""
        return await self._dispatch("get_ttl", lambda tier: tier.get_ttl(key, options))

    async def extend_ttl(self, key: str, ttl: int, options: Optional[CacheOptions] = None) -> bool:
        return await self._dispatch("extend_ttl", lambda tier: tier.extend_ttl(key, ttl, options))

    async def get_keys(self, pattern: str) -> List[str]:
        return await self._dispatch("get_keys", lambda tier: tier.get_keys(pattern))

    async def get_stats(self) -> CacheStats:
        return await self._dispatch("get_stats", lambda tier: tier.get_stats())

    async def flush_all(self) -> None:
        """Clear the cache.

        A remote flush failure is raised: flushing only the local tier would
        misreport what was cleared.
        """
        if self.remote is not None:
            try:
                await self.remote.flush_all()
            except CacheBackendUnavailableError:
                self.logger.error("Remote cache flush failed")
                raise

        if self._memory_cache is not None:
            await self._memory_cache.flush_all()

    async def health_check(self) -> bool:
        """True when the remote tier answers PING."""
        if self.remote is None:
            return False
        return await self.remote.health_check()

    async def close(self):
        """Stop the local sweep task and close the remote client.

        The local tier is discarded; a later call creates a fresh one.
        """
        if self._memory_cache is not None:
            await self._memory_cache.stop()
            self._memory_cache = None
        if self.remote is not None:
            await self.remote.close()

    async def _dispatch(self, operation: str, call: Callable[[Any], Awaitable[T]]) -> T:
        if self.remote is not None:
            try:
                return await call(self.remote)
            except Exception as e:
                self.logger.warning(
                    "Remote cache unavailable, serving from local cache",
                    operation=operation,
                    error=str(e),
                )
                if self.metrics:
                    self.metrics.increment_counter("cache_fallbacks_total", operation=operation)

        memory_cache = await self._get_memory_cache()
        return await call(memory_cache)

    async def _get_memory_cache(self) -> MemoryCache:
        if self._memory_cache is None:
            self.logger.info(
                "Local cache activated",
                remote_configured=self.remote is not None,
                max_keys=self.memory_max_keys,
            )
            self._memory_cache = MemoryCache(
                self.default_ttl,
                self.memory_max_keys,
                self.memory_cleanup_interval,
                clock=self._clock,
                metrics=self.metrics,
            )
            await self._memory_cache.start()
        return self._memory_cache
