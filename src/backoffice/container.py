"""Wiring of the mutation pipeline from configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import structlog

from .config import AppConfig, load_config
from .core.config import PipelineSettings
from .infrastructure.audit_store import SqlAlchemyAuditStore
from .infrastructure.cache import InMemoryCacheBackend, RedisCacheBackend
from .infrastructure.persistence import SqlAlchemyPersistence
from .pipeline.batch import BatchRunner
from .pipeline.cache_aside import CacheAsideReader
from .pipeline.coordinator import TransactionCoordinator
from .pipeline.ports import AuditStore, CacheBackend

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class PipelineContainer:
    """Shared pipeline collaborators handed to every entity service."""

    settings: PipelineSettings
    persistence: SqlAlchemyPersistence
    cache: CacheBackend
    audit_store: AuditStore
    coordinator: TransactionCoordinator
    reader: CacheAsideReader
    batch_runner: BatchRunner


def build_cache_backend(settings: PipelineSettings) -> CacheBackend:
    if settings.cache_backend == "redis":
        backend = RedisCacheBackend.from_url(
            settings.require_redis_url(), key_prefix=settings.cache_key_prefix
        )
        logger.info("cache.backend.selected", backend="redis")
        return backend
    logger.info("cache.backend.selected", backend="memory")
    return InMemoryCacheBackend(max_entries=settings.cache_max_entries)


def build_container(
    config: AppConfig | None = None,
    *,
    cache: CacheBackend | None = None,
    audit_store: AuditStore | None = None,
    sleep: Callable[[float], object] | None = None,
) -> PipelineContainer:
    """Assemble the pipeline; ``cache`` and ``audit_store`` override the defaults."""

    config = config or load_config()
    settings = config.settings
    persistence = SqlAlchemyPersistence(config.session_factory)
    cache_backend = cache if cache is not None else build_cache_backend(settings)
    store = audit_store if audit_store is not None else SqlAlchemyAuditStore(config.session_factory)
    coordinator = TransactionCoordinator(
        persistence,
        cache_backend,
        store,
        max_retries=settings.transaction_max_retries,
        retry_delay_ms=settings.transaction_retry_delay_ms,
        sleep=sleep,
    )
    return PipelineContainer(
        settings=settings,
        persistence=persistence,
        cache=cache_backend,
        audit_store=store,
        coordinator=coordinator,
        reader=CacheAsideReader(
            cache_backend, default_ttl_seconds=settings.cache_default_ttl_seconds
        ),
        batch_runner=BatchRunner(coordinator, default_chunk_size=settings.batch_chunk_size),
    )


__all__ = ["PipelineContainer", "build_cache_backend", "build_container"]
