"""Transactional mutation pipeline shared by back-office services."""

from .audit import AuditRecorder, persist_audit_records
from .batch import (
    BatchItemOutcome,
    BatchResult,
    BatchRunner,
    ItemStatus,
    ProgressStatus,
)
from .cache_aside import CacheAsideReader, service_cache_key
from .coordinator import (
    TransactionCoordinator,
    TransactionResult,
    is_retryable_error,
)
from .invalidation import CacheInvalidationQueue, CacheInvalidationTarget
from .models import SYSTEM_ACTOR, Actor, AuditRecord, PipelineWarning, WarningSource
from .ports import AuditStore, CacheBackend, PersistenceBackend
from .unit_of_work import UnitOfWork, UnitOfWorkState

__all__ = [
    "Actor",
    "AuditRecord",
    "AuditRecorder",
    "AuditStore",
    "BatchItemOutcome",
    "BatchResult",
    "BatchRunner",
    "CacheAsideReader",
    "CacheBackend",
    "CacheInvalidationQueue",
    "CacheInvalidationTarget",
    "ItemStatus",
    "PersistenceBackend",
    "PipelineWarning",
    "ProgressStatus",
    "SYSTEM_ACTOR",
    "TransactionCoordinator",
    "TransactionResult",
    "UnitOfWork",
    "UnitOfWorkState",
    "WarningSource",
    "is_retryable_error",
    "persist_audit_records",
    "service_cache_key",
]
