"""
Cache Service package for the content platform.

Read traffic from the recipe, category, blog and comment endpoints is absorbed
by a two-tier cache:

- app.cache.redis_cache: shared Redis tier, sized and fail-fast.
- app.cache.memory_cache: bounded in-process TTL tier used as fallback.
- app.cache.cache_service: remote-first facade with per-call fallback.
- app.cache.interceptor: request caching for read endpoints and
  declarative invalidation for writes.
- app.main: FastAPI app exposing cache administration and health.

Guidelines:
- A cache failure must never fail the caller's request.
- Tiers do not synchronise; degraded-mode reads may miss.
- Make fallback visible through metrics and logs rather than exceptions.
"""
