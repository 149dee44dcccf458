"""
In-process bounded TTL cache used as the fallback tier.

Entries carry an absolute expiry timestamp. Expired entries are dropped on
read and by a periodic sweep; when the key ceiling is reached the entries
closest to expiry are evicted first.
"""

import asyncio
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

import psutil

from shared.logging import get_logger
from shared.errors import CacheSerializationError
from .options import CacheOptions, CacheStats, build_key, dump_value, load_value

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_TTL = 3600
DEFAULT_MAX_KEYS = 1000
DEFAULT_CLEANUP_INTERVAL = 300
EVICTION_RATIO = 0.1


@dataclass
class CacheEntry:
    """An encoded value and the wall-clock second it stops being valid."""
    payload: str
    expires_at: float


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a ``*`` glob into a regex; every other character is literal."""
    parts = [re.escape(part) for part in str(pattern).split("*")]
    return re.compile(".*".join(parts), re.DOTALL)


class MemoryCache:
    """Single-process key/value store with per-entry expiry and a key ceiling."""

    def __init__(
        self,
        default_ttl: int = DEFAULT_TTL,
        max_keys: int = DEFAULT_MAX_KEYS,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        *,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.default_ttl = default_ttl
        self.max_keys = max_keys
        self.cleanup_interval = cleanup_interval
        self.logger = get_logger("cache.memory")
        self.metrics = metrics
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

        self.cleanup_task: Optional[asyncio.Task] = None
        self.running = False

    def __len__(self) -> int:
        return len(self._entries)

    async def start(self):
        """Start the periodic expiry sweep."""
        if self.running:
            return
        self.running = True
        self.cleanup_task = asyncio.create_task(self._cleanup_loop())
        self.logger.info("Memory cache started", max_keys=self.max_keys, cleanup_interval=self.cleanup_interval)

    async def stop(self):
        """Cancel the expiry sweep."""
        self.running = False
        if self.cleanup_task:
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
            self.cleanup_task = None

        self.logger.info("Memory cache stopped")

    async def set(self, key: str, value: Any, options: Optional[CacheOptions] = None) -> bool:
        """Store a copy of the value, evicting first when the key ceiling is reached.

        Values go through the same JSON encoding as the remote tier; one that
        cannot be encoded is not stored and False is returned.
        """
        options = options or CacheOptions()
        ttl = options.ttl or self.default_ttl
        cache_key = build_key(key, options.prefix)

        try:
            payload = dump_value(value)
        except CacheSerializationError as e:
            self.logger.warning("Skipping cache write", key=cache_key, error=e.message)
            if self.metrics:
                self.metrics.increment_counter("cache_errors_total", tier="local", operation="set")
            return False

        try:
            self._check_max_keys()

            self._entries[cache_key] = CacheEntry(payload=payload, expires_at=self._clock() + ttl)
            self._update_size_gauge()
            return True
        except Exception as e:
            self._record_failure("set", e)
            return False

    async def get(self, key: str, options: Optional[CacheOptions] = None) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        options = options or CacheOptions()
        try:
            entry = self._live_entry(build_key(key, options.prefix))
            if entry is None:
                self._count("cache_misses_total")
                return None

            value = load_value(entry.payload)
            self._count("cache_hits_total")
            return value
        except Exception as e:
            self._record_failure("get", e)
            return None

    async def delete(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        options = options or CacheOptions()
        try:
            removed = self._entries.pop(build_key(key, options.prefix), None) is not None
            self._update_size_gauge()
            return removed
        except Exception as e:
            self._record_failure("delete", e)
            return False

    async def delete_by_pattern(self, pattern: str) -> int:
        """Remove every key matching the glob pattern and return how many went."""
        try:
            matched = self._match(pattern)
            for cache_key in matched:
                del self._entries[cache_key]
            self._update_size_gauge()
            return len(matched)
        except Exception as e:
            self._record_failure("delete_by_pattern", e)
            return 0

    async def exists(self, key: str, options: Optional[CacheOptions] = None) -> bool:
        options = options or CacheOptions()
        try:
            return self._live_entry(build_key(key, options.prefix)) is not None
        except Exception as e:
            self._record_failure("exists", e)
            return False

    async def get_ttl(self, key: str, options: Optional[CacheOptions] = None) -> int:
        """Seconds left: -2 when absent, -1 when already expired."""
        options = options or CacheOptions()
        try:
            entry = self._entries.get(build_key(key, options.prefix))
            if entry is None:
                return -2

            remaining = math.ceil(entry.expires_at - self._clock())
            return remaining if remaining > 0 else -1
        except Exception as e:
            self._record_failure("get_ttl", e)
            return -1

    async def extend_ttl(self, key: str, ttl: int, options: Optional[CacheOptions] = None) -> bool:
        """Reset the entry's expiry to ``ttl`` seconds from now."""
        options = options or CacheOptions()
        try:
            entry = self._live_entry(build_key(key, options.prefix))
            if entry is None:
                return False

            entry.expires_at = self._clock() + ttl
            return True
        except Exception as e:
            self._record_failure("extend_ttl", e)
            return False

    async def get_keys(self, pattern: str) -> List[str]:
        try:
            return self._match(pattern)
        except Exception as e:
            self._record_failure("get_keys", e)
            return []

    async def flush_all(self) -> None:
        try:
            self._entries.clear()
            self._update_size_gauge()
        except Exception as e:
            self._record_failure("flush_all", e)

    async def get_stats(self) -> CacheStats:
        try:
            return CacheStats(
                total_keys=len(self._entries),
                memory_usage=self._memory_usage(),
                connected_clients=1,
            )
        except Exception as e:
            self._record_failure("get_stats", e)
            return CacheStats(total_keys=0, memory_usage="Unknown", connected_clients=0)

    def cleanup(self) -> int:
        """Drop every expired entry; returns the number removed."""
        now = self._clock()
        expired = [cache_key for cache_key, entry in self._entries.items() if now > entry.expires_at]
        for cache_key in expired:
            del self._entries[cache_key]

        if expired:
            self.logger.debug("Removed expired cache entries", count=len(expired))
            self._update_size_gauge()
        return len(expired)

    def _live_entry(self, cache_key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(cache_key)
        if entry is None:
            return None

        if self._clock() > entry.expires_at:
            del self._entries[cache_key]
            self._update_size_gauge()
            return None

        return entry

    def _match(self, pattern: str) -> List[str]:
        """Live keys matching the glob; expired entries are swept first."""
        self.cleanup()
        regex = glob_to_regex(pattern)
        return [cache_key for cache_key in self._entries if regex.fullmatch(cache_key)]

    def _check_max_keys(self):
        """Make room for one more entry when at the key ceiling."""
        try:
            if len(self._entries) < self.max_keys:
                return

            self.cleanup()
            if len(self._entries) < self.max_keys:
                return

            # Approximates least-time-to-live eviction.
            to_evict = math.ceil(self.max_keys * EVICTION_RATIO)
            oldest = sorted(self._entries.items(), key=lambda item: item[1].expires_at)[:to_evict]
            for cache_key, _ in oldest:
                del self._entries[cache_key]

            self._count("cache_evictions_total", amount=len(oldest))
            self.logger.info("Evicted soonest-expiring entries", count=len(oldest), max_keys=self.max_keys)
        except Exception as e:
            self._record_failure("evict", e)

    async def _cleanup_loop(self):
        while self.running:
            try:
                await asyncio.sleep(self.cleanup_interval)
                self.cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Error in cache cleanup loop", error=str(e))

    def _memory_usage(self) -> str:
        try:
            used_mb = round(psutil.Process().memory_info().rss / 1024 / 1024)
            return f"{used_mb}MB"
        except psutil.Error:
            return "Unknown"

    def _record_failure(self, operation: str, error: Exception):
        self.logger.error("Memory cache operation failed", operation=operation, error=str(error))
        if self.metrics:
            self.metrics.increment_counter("cache_errors_total", tier="local", operation=operation)

    def _count(self, metric_name: str, amount: float = 1):
        if self.metrics:
            self.metrics.increment_counter(metric_name, amount=amount, tier="local")

    def _update_size_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("cache_local_keys", len(self._entries))
