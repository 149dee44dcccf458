"""
Request caching for read endpoints and explicit invalidation for writes.

Usage:
    interceptor = CacheInterceptor(cache_service)

    @app.get("/recipes/{recipe_id}")
    @interceptor.cacheable(ttl=600)
    async def get_recipe(request: Request, recipe_id: int):
        ...

    @app.put("/recipes/{recipe_id}")
    @interceptor.evict("api:/recipes*")
    async def update_recipe(recipe_id: int, body: RecipeUpdate):
        ...
"""

import asyncio
import functools
import inspect
import json
from typing import Any, Callable, Optional, Set, Union

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder

from shared.logging import get_logger
from .cache_service import CacheService
from .options import CacheOptions


DEFAULT_API_TTL = 3600
DEFAULT_API_PREFIX = "api"
CACHEABLE_METHODS = frozenset({"GET"})

KeySpec = Union[str, Callable[[Request], str], None]
PatternSpec = Union[str, Callable[..., str]]

logger = get_logger("cache.interceptor")


def build_request_cache_key(request: Request) -> str:
    """Derive a stable key from the path, query string and path parameters."""
    query = json.dumps(sorted(request.query_params.multi_items()), separators=(",", ":"))
    params = json.dumps(dict(sorted(request.path_params.items())), separators=(",", ":"), default=str)
    return f"{request.url.path}:{query}:{params}"


def _find_request(args: tuple, kwargs: dict) -> Optional[Request]:
    for value in list(kwargs.values()) + list(args):
        if isinstance(value, Request):
            return value
    return None


def _accepts_request(func: Callable) -> bool:
    for parameter in inspect.signature(func).parameters.values():
        if parameter.annotation in (Request, "Request") or (
            inspect.isclass(parameter.annotation) and issubclass(parameter.annotation, Request)
        ):
            return True
    return False


class CacheInterceptor:
    """Wraps FastAPI read endpoints with get-or-compute-and-store caching."""

    def __init__(
        self,
        cache_service: CacheService,
        ttl: int = DEFAULT_API_TTL,
        prefix: str = DEFAULT_API_PREFIX,
    ):
        self.cache_service = cache_service
        self.ttl = ttl
        self.prefix = prefix
        self.logger = logger
        self._pending_writes: Set[asyncio.Task] = set()

    def cacheable(
        self,
        ttl: Optional[int] = None,
        prefix: Optional[str] = None,
        key: KeySpec = None,
    ) -> Callable:
        """Cache a read endpoint's result.

        The endpoint must declare a ``Request`` parameter. ``key`` overrides
        the derived key, either as a fixed string or a function of the request.
        """
        options = CacheOptions(ttl=ttl or self.ttl, prefix=prefix or self.prefix)

        def decorator(func: Callable) -> Callable:
            if not _accepts_request(func):
                raise TypeError(f"{func.__name__} must accept a fastapi.Request parameter to be cacheable")

            @functools.wraps(func)
            async def wrapper(*args, **kwargs):
                request = _find_request(args, kwargs)
                if request is None or request.method not in CACHEABLE_METHODS:
                    return await func(*args, **kwargs)

                cache_key = self._resolve_key(request, key)

                cached_data = await self.cache_service.get(cache_key, options)
                if cached_data is not None:
                    self.logger.debug("Request cache hit", key=cache_key)
                    return cached_data

                result = await func(*args, **kwargs)
                if not isinstance(result, Response):
                    self._schedule_write(cache_key, result, options)
                return result

            return wrapper
        return decorator

    def evict(self, *patterns: PatternSpec) -> Callable:
        """Invalidate matching keys after the wrapped coroutine succeeds.

        Patterns may be callables receiving the wrapped function's arguments.
        """
        return cache_evict(self.cache_service, *patterns)

    async def wait_for_pending(self):
        """Wait for scheduled cache writes to finish."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return len(self._pending_writes)

    def _resolve_key(self, request: Request, key: KeySpec) -> str:
        if callable(key):
            return str(key(request))
        if key is not None:
            return str(key)
        return build_request_cache_key(request)

    def _schedule_write(self, cache_key: str, result: Any, options: CacheOptions):
        try:
            payload = jsonable_encoder(result)
        except Exception as e:
            self.logger.warning("Result not cacheable", key=cache_key, error=str(e))
            return

        task = asyncio.create_task(self._write(cache_key, payload, options))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write(self, cache_key: str, payload: Any, options: CacheOptions):
        try:
            await self.cache_service.set(cache_key, payload, options)
        except Exception as e:
            self.logger.error("Request cache write failed", key=cache_key, error=str(e))


def cached(
    cache_service: CacheService,
    key_builder: Callable[..., str],
    ttl: Optional[int] = None,
    prefix: Optional[str] = None,
) -> Callable:
    """Cache-aside wrapper for any coroutine function.

    ``key_builder`` receives the wrapped function's arguments. None results are
    not cached, since None is indistinguishable from a miss.
    """
    options = CacheOptions(ttl=ttl, prefix=prefix)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            cache_key = key_builder(*args, **kwargs)

            cached_result = await cache_service.get(cache_key, options)
            if cached_result is not None:
                return cached_result

            result = await func(*args, **kwargs)
            if result is not None:
                try:
                    await cache_service.set(cache_key, jsonable_encoder(result), options)
                except Exception as e:
                    logger.error("Cache-aside write failed", key=cache_key, error=str(e))
            return result

        return wrapper
    return decorator


def cache_evict(cache_service: CacheService, *patterns: PatternSpec) -> Callable:
    """Delete keys matching ``patterns`` once the wrapped coroutine returns."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            result = await func(*args, **kwargs)

            for pattern_spec in patterns:
                try:
                    pattern = pattern_spec(*args, **kwargs) if callable(pattern_spec) else pattern_spec
                    deleted = await cache_service.delete_by_pattern(pattern)
                    logger.debug("Evicted cache pattern", pattern=pattern, deleted=deleted)
                except Exception as e:
                    logger.error("Cache eviction failed", pattern=getattr(pattern_spec, "__name__", pattern_spec), error=str(e))

            return result

        return wrapper
    return decorator
