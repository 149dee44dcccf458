"""
Cache service for the content platform.
"""

from typing import Any, Dict, Optional

from fastapi import Query

from shared.base_service import BaseService
from shared.errors import ValidationError

from .cache.cache_service import CacheService
from .cache.interceptor import CacheInterceptor
from .cache.options import CacheOptions


class CacheLayerService(BaseService):
    """Cache service implementation."""

    def __init__(self, cache_service: Optional[CacheService] = None, **config_overrides: Any):
        super().__init__("cache", 8020, **config_overrides)

        self.cache = cache_service or CacheService.from_config(self.config, metrics=self.metrics)
        self.interceptor = CacheInterceptor(
            self.cache,
            ttl=self.config.api_cache_ttl,
            prefix=self.config.api_cache_prefix,
        )

        self._setup_cache_routes()

        self.app.state.cache_service = self.cache
        self.app.state.cache_interceptor = self.interceptor

    def _setup_cache_routes(self):
        """Set up cache administration routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "cache",
                "message": "Content Platform - Cache Service",
                "version": "1.0.0",
                "capabilities": ["remote_cache", "memory_fallback", "request_cache"]
            }

        @self.app.get("/cache/stats")
        async def cache_stats():
            """Statistics of whichever tier serves the call."""
            stats = await self.cache.get_stats()
            return stats.model_dump()

        @self.app.get("/cache/keys")
        async def list_keys(pattern: str = Query("*", description="Glob pattern, * matches any sequence")):
            keys = await self.cache.get_keys(pattern)
            return {"pattern": pattern, "keys": keys, "count": len(keys)}

        @self.app.delete("/cache/keys")
        async def delete_keys(pattern: str = Query(..., description="Glob pattern of keys to delete")):
            if not pattern.strip():
                raise ValidationError("Pattern must not be empty", {"pattern": pattern})

            deleted = await self.cache.delete_by_pattern(pattern)
            self.logger.info("Cache keys invalidated", pattern=pattern, deleted=deleted)
            return {"pattern": pattern, "deleted": deleted}

        @self.app.get("/cache/keys/{key:path}/ttl")
        async def key_ttl(key: str, prefix: Optional[str] = None):
            ttl = await self.cache.get_ttl(key, CacheOptions(prefix=prefix))
            return {"key": key, "prefix": prefix, "ttl": ttl}

        @self.app.delete("/cache/keys/{key:path}")
        async def delete_key(key: str, prefix: Optional[str] = None):
            deleted = await self.cache.delete(key, CacheOptions(prefix=prefix))
            return {"key": key, "prefix": prefix, "deleted": deleted}

        @self.app.delete("/cache")
        async def flush_cache():
            await self.cache.flush_all()
            self.logger.warning("Cache flushed")
            return {"flushed": True}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check cache service dependencies."""
        dependencies = {}

        if self.cache.remote is None:
            dependencies["redis"] = "disabled"
        elif await self.cache.health_check():
            dependencies["redis"] = "ok"
        else:
            dependencies["redis"] = "error"

        dependencies["memory_cache"] = "active" if self.cache.memory_cache_created else "idle"
        return dependencies

    async def start(self):
        """Start cache service components."""
        self.logger.info(
            "Cache service started",
            remote_configured=self.cache.remote is not None,
            default_ttl=self.config.redis_ttl,
        )

    async def stop(self):
        """Stop cache service components."""
        await self.interceptor.wait_for_pending()
        await self.cache.close()
        self.logger.info("Cache service stopped")


def create_app(**config_overrides: Any):
    """Create cache service application."""
    service = CacheLayerService(**config_overrides)
    return service.app


if __name__ == "__main__":
    service = CacheLayerService()
    service.run()
