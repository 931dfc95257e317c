"""Infrastructure adapters for the back-office mutation pipeline."""

from __future__ import annotations

from .audit_store import InMemoryAuditStore, SqlAlchemyAuditStore
from .cache import InMemoryCacheBackend, RedisCacheBackend
from .persistence import SqlAlchemyPersistence

__all__ = [
    "InMemoryAuditStore",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "SqlAlchemyAuditStore",
    "SqlAlchemyPersistence",
]
