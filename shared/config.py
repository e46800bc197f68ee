"""
Shared configuration management for the Integration Hub access layer.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ACCESS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Secrets
    secrets_file: Optional[str] = Field(default=None)


class AccessSettings(BaseConfig):
    """Settings for the credential vault and access policy service."""

    service_name: str = "access"
    host: str = "0.0.0.0"
    port: int = 8020

    # Sessions
    session_backend: str = Field(default="memory")
    session_cookie_name: str = Field(default="session_token")
    session_ttl_seconds: int = Field(default=30 * 24 * 60 * 60)

    # Rate limiting
    rate_limit_max_requests: int = Field(default=60, ge=1)
    rate_limit_window_ms: int = Field(default=60_000, ge=1)
    rate_limit_eviction_windows: int = Field(default=2, ge=1)
    rate_limit_max_entries: Optional[int] = Field(default=None, ge=1)


@lru_cache(maxsize=1)
def get_settings() -> AccessSettings:
    """Get the process-wide settings instance."""
    return AccessSettings()
