"""Typed settings for the mutation pipeline.

Values are read from ``BACKOFFICE_*`` environment variables. Defaults keep the
pipeline usable in development: SQLite for persistence and the in-process
cache backend.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSettings(BaseSettings):
    """Pydantic settings container for the pipeline and its backends."""

    model_config = SettingsConfigDict(env_prefix="BACKOFFICE_", extra="ignore")

    database_url: str = Field(
        default="sqlite:///backoffice.db",
        description="SQLAlchemy URL of the primary datastore.",
    )
    cache_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Cache backend used for cache-aside reads and invalidation.",
    )
    redis_url: str = Field(
        default="",
        description="Redis connection string, required when cache_backend=redis.",
    )
    cache_key_prefix: str = Field(
        default="backoffice:",
        description="Namespace prepended to every key stored in Redis.",
    )
    cache_default_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="TTL applied by with_caching when the caller passes none.",
    )
    cache_max_entries: int = Field(
        default=10_000,
        ge=1,
        description="Upper bound on entries held by the in-memory backend.",
    )
    batch_chunk_size: int = Field(
        default=100,
        ge=1,
        description="Default number of items per batch chunk.",
    )
    transaction_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries applied by transaction_with_retry on retryable errors.",
    )
    transaction_retry_delay_ms: int = Field(
        default=100,
        ge=0,
        description="Delay between transaction retries in milliseconds.",
    )
    audit_enabled: bool = Field(
        default=True,
        description="Disable to turn audit() into a no-op.",
    )
    log_level: str = Field(default="INFO")

    @field_validator("redis_url")
    @classmethod
    def _strip_redis_url(cls, value: str) -> str:
        return value.strip()

    def require_redis_url(self) -> str:
        """Return the Redis URL or fail when the redis backend is misconfigured."""

        if not self.redis_url:
            raise ValueError("BACKOFFICE_REDIS_URL is required when cache_backend=redis")
        return self.redis_url


__all__ = ["PipelineSettings"]
