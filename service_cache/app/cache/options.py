"""
Per-call cache options, statistics model, key composition and value encoding shared by both tiers.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, Field

from shared.errors import CacheSerializationError


@dataclass(frozen=True)
class CacheOptions:
    """Per-call TTL (seconds) and key namespace."""
    ttl: Optional[int] = None
    prefix: Optional[str] = None


class CacheStats(BaseModel):
    """Cache statistics reported by either tier."""
    total_keys: int = Field(0, description="Number of keys held by the tier")
    memory_usage: str = Field("N/A", description="Human readable memory usage")
    connected_clients: int = Field(0, description="Clients connected to the tier")


def build_key(key: str, prefix: Optional[str] = None) -> str:
    """Compose ``prefix:key``, or the bare key when no prefix is given."""
    return f"{prefix}:{key}" if prefix else str(key)


def dump_value(value: Any) -> str:
    """Encode a value in the cache wire format shared by both tiers."""
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise CacheSerializationError(details={"type": type(value).__name__, "error": str(e)}) from e


def load_value(payload: str) -> Any:
    return json.loads(payload)
