"""Collaborator protocols consumed by the mutation pipeline."""

from __future__ import annotations

from typing import Any, Protocol

from .models import AuditRecord


class PersistenceBackend(Protocol):
    """Datastore transaction boundary driven by the coordinator.

    Only the outermost unit of work calls these methods; nesting is handled
    by the coordinator and never reaches the backend.
    """

    def begin(self) -> None:
        """Open a physical transaction for the current execution context."""

        raise NotImplementedError

    def commit(self) -> None:
        """Commit the current transaction."""

        raise NotImplementedError

    def rollback(self) -> None:
        """Rollback the current transaction."""

        raise NotImplementedError


class CacheBackend(Protocol):
    """Key/value store with TTL and glob-pattern deletion."""

    def get(self, key: str) -> Any | None:
        """Return the cached value or ``None`` on miss."""

        raise NotImplementedError

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""

        raise NotImplementedError

    def delete_key(self, key: str) -> bool:
        """Delete an exact key, returning whether it existed."""

        raise NotImplementedError

    def delete_matching(self, pattern: str) -> int:
        """Delete every key matching the glob ``pattern``."""

        raise NotImplementedError

    def is_available(self) -> bool:
        """Report whether the backend is reachable."""

        raise NotImplementedError


class AuditStore(Protocol):
    """Append-only log of audit records."""

    def insert(self, record: AuditRecord) -> bool:
        """Persist ``record``; ``False`` or an exception signals failure."""

        raise NotImplementedError


__all__ = ["AuditStore", "CacheBackend", "PersistenceBackend"]
