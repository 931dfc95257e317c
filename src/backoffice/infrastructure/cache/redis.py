"""Redis cache backend (redis-py) with a key prefix namespace."""

from __future__ import annotations

import json
from typing import Any

import redis
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_KEY_PREFIX = "backoffice:"


class RedisCacheBackend:
    """Store JSON-encoded values in Redis with native TTL.

    Every key is namespaced with ``key_prefix`` so pattern deletion never
    reaches keys owned by other applications. Values must be JSON
    serialisable; anything else raises ``TypeError`` rather than being
    stored as its ``str()``. Redis errors propagate; the
    pipeline decides whether a failure is a miss or a warning.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        scan_batch_size: int = 500,
    ) -> None:
        if scan_batch_size < 1:
            raise ValueError("scan_batch_size must be at least 1")
        self._client = client
        self._prefix = key_prefix
        self._scan_batch_size = scan_batch_size

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = DEFAULT_KEY_PREFIX) -> "RedisCacheBackend":
        if not url:
            raise ValueError("redis url is required")
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, key_prefix=key_prefix)

    @property
    def key_prefix(self) -> str:
        return self._prefix

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Any | None:
        raw = self._client.get(self._k(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be at least 1")
        self._client.setex(self._k(key), int(ttl_seconds), json.dumps(value))

    def delete_key(self, key: str) -> bool:
        return bool(self._client.delete(self._k(key)))

    def delete_matching(self, pattern: str) -> int:
        batch: list[str] = []
        deleted = 0
        for key in self._client.scan_iter(match=self._k(pattern), count=self._scan_batch_size):
            batch.append(key)
            if len(batch) >= self._scan_batch_size:
                deleted += self._client.delete(*batch)
                batch = []
        if batch:
            deleted += self._client.delete(*batch)
        return deleted

    def is_available(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as exc:
            logger.warning("cache.redis.unavailable", error=str(exc))
            return False

    def stats(self) -> dict[str, Any]:
        size = sum(1 for _ in self._client.scan_iter(match=self._k("*"), count=self._scan_batch_size))
        return {"backend": "redis", "key_prefix": self._prefix, "size": size}


__all__ = ["DEFAULT_KEY_PREFIX", "RedisCacheBackend"]
