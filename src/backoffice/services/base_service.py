"""Base class giving entity services the transactional mutation pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, TypeVar
from uuid import uuid4

import structlog

from ..container import PipelineContainer
from ..exceptions import ensure_found
from ..infrastructure.persistence import SqlAlchemyPersistence
from ..pipeline.audit import AuditRecorder
from ..pipeline.batch import BatchResult, BatchRunner, ProgressCallback
from ..pipeline.cache_aside import CacheAsideReader, service_cache_key
from ..pipeline.coordinator import TransactionCoordinator, TransactionResult
from ..pipeline.invalidation import WILDCARD, InvalidationTarget
from ..pipeline.models import Actor
from ..pipeline.ports import AuditStore, CacheBackend

logger = structlog.get_logger(__name__)

T = TypeVar("T")
ItemT = TypeVar("ItemT")
ModelT = TypeVar("ModelT")


class BaseService(ABC):
    """Facade over the pipeline shared by concrete entity services.

    Subclasses name themselves through :attr:`service_name`; the name scopes
    cache keys, transaction labels and audit context.
    """

    def __init__(
        self,
        *,
        coordinator: TransactionCoordinator,
        persistence: SqlAlchemyPersistence,
        cache: CacheBackend,
        audit_store: AuditStore,
        reader: CacheAsideReader | None = None,
        batch_runner: BatchRunner | None = None,
        audit_enabled: bool = True,
    ) -> None:
        if not self.service_name:
            raise ValueError(f"{type(self).__name__}.service_name must not be empty")
        self._coordinator = coordinator
        self._persistence = persistence
        self._cache = cache
        self._audit_store = audit_store
        self._reader = reader or CacheAsideReader(cache)
        self._batch_runner = batch_runner or BatchRunner(coordinator)
        self._recorder = AuditRecorder(
            coordinator,
            audit_store,
            service_name=self.service_name,
            enabled=audit_enabled,
        )
        self._initialized_at = datetime.now(timezone.utc)

    @classmethod
    def from_container(cls, container: PipelineContainer, **kwargs: Any) -> "BaseService":
        return cls(
            coordinator=container.coordinator,
            persistence=container.persistence,
            cache=container.cache,
            audit_store=container.audit_store,
            reader=container.reader,
            batch_runner=container.batch_runner,
            audit_enabled=container.settings.audit_enabled,
            **kwargs,
        )

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Short identifier used as cache key namespace and audit context."""

    @property
    def persistence(self) -> SqlAlchemyPersistence:
        return self._persistence

    @property
    def coordinator(self) -> TransactionCoordinator:
        return self._coordinator

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def transaction(
        self, body: Callable[[], T], label: str | None = None, *, actor: Actor | None = None
    ) -> T:
        return self._coordinator.transaction(body, label or self._label(), actor=actor, stacklevel=3)

    def run_transaction(
        self, body: Callable[[], T], label: str | None = None, *, actor: Actor | None = None
    ) -> TransactionResult[T]:
        return self._coordinator.run(body, label or self._label(), actor=actor)

    def transaction_with_retry(
        self,
        body: Callable[[], T],
        label: str | None = None,
        *,
        actor: Actor | None = None,
        max_retries: int | None = None,
        retry_delay_ms: int | None = None,
    ) -> T:
        return self._coordinator.transaction_with_retry(
            body,
            label or self._label(),
            actor=actor,
            max_retries=max_retries,
            retry_delay_ms=retry_delay_ms,
            stacklevel=3,
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------
    def cache_key(self, operation: str, parameters: Mapping[str, Any] | None = None) -> str:
        return service_cache_key(self.service_name, operation, parameters)

    def with_caching(
        self, key: str, producer: Callable[[], T], ttl_seconds: int | None = None
    ) -> T:
        return self._reader.with_caching(key, producer, ttl_seconds)

    def queue_cache_operation(self, target: InvalidationTarget) -> None:
        self._coordinator.queue_cache_operation(target, stacklevel=3)

    def clear_service_cache(self) -> None:
        """Drop every ``<service_name>:*`` key, after commit when inside a transaction."""

        self._coordinator.queue_cache_operation(f"{self.service_name}:{WILDCARD}", stacklevel=3)

    # ------------------------------------------------------------------
    # Audit and batch
    # ------------------------------------------------------------------
    def audit(
        self,
        action_type: str,
        entity_type: str,
        entity_id: object,
        old_values: Mapping[str, Any] | None = None,
        new_values: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
        *,
        actor: Actor | None = None,
    ) -> None:
        self._recorder.audit(
            action_type,
            entity_type,
            entity_id,
            old_values,
            new_values,
            context,
            actor=actor,
            stacklevel=3,
        )

    def batch_operation(
        self,
        items: Iterable[ItemT],
        operation: Callable[[ItemT, int], T],
        chunk_size: int | None = None,
        progress: ProgressCallback[ItemT] | None = None,
        *,
        fail_fast_on: tuple[type[BaseException], ...] = (),
        identify: Callable[[ItemT], Any] | None = None,
        label: str | None = None,
        actor: Actor | None = None,
    ) -> BatchResult[T]:
        return self._batch_runner.run(
            items,
            operation,
            chunk_size,
            progress,
            fail_fast_on=fail_fast_on,
            identify=identify,
            label=label or f"{self.service_name}_batch",
            actor=actor,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def get_entity(self, model: type[ModelT], identifier: Any, *, required: bool = True) -> ModelT | None:
        """Load ``model`` by primary key, raising ``NotFoundError`` when required."""

        record = self.transaction(lambda: self._persistence.find(model, identifier))
        if required:
            ensure_found(record, entity=model.__name__, identifier=identifier)
        return record

    # ------------------------------------------------------------------
    # Health and metrics
    # ------------------------------------------------------------------
    def health_status(self) -> dict[str, Any]:
        database = self._persistence.ping()
        cache = self._safe_cache_available()
        ready = database and cache
        return {
            "status": "healthy" if ready else "unhealthy",
            "ready": ready,
            "dependencies": {
                "database": database,
                "cache": cache,
                "audit_store": self._audit_store is not None,
            },
            "initialized_at": self._initialized_at.isoformat(),
            "service_name": self.service_name,
        }

    def performance_metrics(self) -> dict[str, Any]:
        metrics: dict[str, Any] = dict(self._coordinator.performance_metrics())
        metrics.update(self._reader.stats())
        return metrics

    def reset_metrics(self) -> None:
        self._coordinator.reset_metrics()
        self._reader.reset_stats()

    def _label(self) -> str:
        return f"{self.service_name}_{uuid4().hex[:13]}"

    def _safe_cache_available(self) -> bool:
        try:
            return bool(self._cache.is_available())
        except Exception as exc:
            logger.warning("cache.health.failed", service=self.service_name, error=str(exc))
            return False


__all__ = ["BaseService"]
