"""
Factory for the remote cache client.
"""

from typing import Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff

from shared.config import BaseConfig
from shared.logging import get_logger


logger = get_logger("cache.redis_provider")


def create_redis_client(config: BaseConfig) -> Optional[redis.Redis]:
    """Build the Redis client from configuration, or None when the remote tier is disabled.

    The client fails fast: finite connect/command timeouts and no retries, so
    the facade can fall back to the local tier instead of blocking. Nothing
    connects until the first command is issued.
    """
    if not config.remote_cache_configured:
        logger.info("Remote cache disabled, local cache only")
        return None

    client = redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        password=config.redis_password or None,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=config.redis_connect_timeout,
        socket_timeout=config.redis_command_timeout,
        socket_keepalive=True,
        retry_on_timeout=False,
        retry=Retry(NoBackoff(), 0),
        health_check_interval=0,
    )

    logger.info(
        "Remote cache client created",
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        connect_timeout=config.redis_connect_timeout,
        command_timeout=config.redis_command_timeout,
    )
    return client
