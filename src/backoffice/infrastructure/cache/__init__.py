"""Cache backends implementing :class:`backoffice.pipeline.CacheBackend`."""

from .memory import CacheEntry, InMemoryCacheBackend
from .redis import RedisCacheBackend

__all__ = ["CacheEntry", "InMemoryCacheBackend", "RedisCacheBackend"]
