"""
Shared configuration management for the content platform cache layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Remote cache tier
    redis_enabled: bool = Field(default=True)
    redis_host: str = Field(default="localhost")
    redis_port: int = Field(default=6379)
    redis_password: Optional[str] = Field(default=None)
    redis_db: int = Field(default=0)
    redis_connect_timeout: float = Field(default=10.0)
    redis_command_timeout: float = Field(default=5.0)
    redis_ttl: int = Field(default=3600)
    redis_max: int = Field(default=100)

    # Local fallback tier
    memory_cache_max_keys: int = Field(default=1000)
    memory_cache_cleanup_interval: int = Field(default=300)

    # Request cache
    api_cache_ttl: int = Field(default=3600)
    api_cache_prefix: str = Field(default="api")

    @property
    def remote_cache_configured(self) -> bool:
        """Whether a remote cache endpoint should be used at all."""
        return self.redis_enabled and bool(self.redis_host)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
