"""Cache-aside reads over a :class:`CacheBackend`."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Mapping, TypeVar

import structlog

from .ports import CacheBackend

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 3600


def service_cache_key(
    service: str, operation: str, parameters: Mapping[str, Any] | None = None
) -> str:
    """Build ``service:operation:<md5>`` from order-independent parameters."""

    if not service or not operation:
        raise ValueError("service and operation are required to build a cache key")
    payload = json.dumps(parameters or {}, sort_keys=True, default=str)
    digest = hashlib.md5(payload.encode("utf-8")).hexdigest()
    return f"{service}:{operation}:{digest}"


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return (self.hits / lookups * 100) if lookups else 0.0

    def snapshot(self) -> dict[str, float | int]:
        return {
            "cache_hits": self.hits,
            "cache_misses": self.misses,
            "cache_errors": self.errors,
            "cache_hit_rate_percent": round(self.hit_rate, 2),
        }


class CacheAsideReader:
    """Return cached values or populate them from a producer on miss.

    ``None`` is the backend's miss marker, so ``None`` results are handed
    back to the caller but never stored. Backend failures degrade to a miss
    (on read) or a skipped store (on write).
    """

    def __init__(
        self, cache: CacheBackend, *, default_ttl_seconds: int = DEFAULT_TTL_SECONDS
    ) -> None:
        if default_ttl_seconds < 1:
            raise ValueError("default_ttl_seconds must be at least 1")
        self._cache = cache
        self._default_ttl_seconds = default_ttl_seconds
        self._stats = CacheStats()
        self._lock = Lock()

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl_seconds

    def with_caching(
        self, key: str, producer: Callable[[], T], ttl_seconds: int | None = None
    ) -> T:
        if not key:
            raise ValueError("cache key must not be empty")
        ttl = self._default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl < 1:
            raise ValueError("ttl_seconds must be at least 1")

        cached = self._read(key)
        if cached is not None:
            self._count(hit=True)
            return cached
        self._count(hit=False)

        value = producer()
        if value is not None:
            self._write(key, value, ttl)
        return value

    def stats(self) -> dict[str, float | int]:
        with self._lock:
            return self._stats.snapshot()

    def reset_stats(self) -> None:
        with self._lock:
            self._stats = CacheStats()

    def _read(self, key: str) -> Any | None:
        try:
            return self._cache.get(key)
        except Exception as exc:
            self._count_error()
            logger.warning("cache.read.failed", key=key, error=str(exc))
            return None

    def _write(self, key: str, value: Any, ttl: int) -> None:
        try:
            self._cache.set(key, value, ttl)
        except Exception as exc:
            self._count_error()
            logger.warning("cache.write.failed", key=key, error=str(exc))

    def _count(self, *, hit: bool) -> None:
        with self._lock:
            if hit:
                self._stats.hits += 1
            else:
                self._stats.misses += 1

    def _count_error(self) -> None:
        with self._lock:
            self._stats.errors += 1


__all__ = ["CacheAsideReader", "CacheStats", "DEFAULT_TTL_SECONDS", "service_cache_key"]
