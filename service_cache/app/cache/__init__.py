"""
Cache package for the Cache Service.

Provides the remote-first ``CacheService`` facade, its Redis and in-memory
tiers, and the request interceptor used by read endpoints.
"""

from .options import CacheOptions, CacheStats, build_key
from .memory_cache import MemoryCache
from .redis_cache import RedisCache
from .redis_provider import create_redis_client
from .cache_service import CacheService
from .interceptor import CacheInterceptor, build_request_cache_key, cache_evict, cached

__all__ = [
    "CacheOptions",
    "CacheStats",
    "build_key",
    "MemoryCache",
    "RedisCache",
    "create_redis_client",
    "CacheService",
    "CacheInterceptor",
    "build_request_cache_key",
    "cache_evict",
    "cached",
]
