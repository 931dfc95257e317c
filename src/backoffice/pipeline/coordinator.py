"""Transaction boundary with deferred cache invalidation and audit flush.

Only the outermost ``transaction()`` of an execution context talks to the
persistence backend. Nested calls join the same :class:`UnitOfWork`; a
failure at any depth dooms the whole unit of work. Queued invalidations and
buffered audit records are applied strictly after the backend confirmed the
commit and are dropped on rollback.
"""

from __future__ import annotations

import re
import time
import warnings
from contextvars import ContextVar
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Generic, TypeVar
from uuid import uuid4

import structlog
from sqlalchemy import exc as sa_exc

from ..exceptions import (
    StorageFailureError,
    TransactionCommitError,
    TransactionRolledBackError,
    translate_storage_error,
)
from .audit import persist_audit_records
from .invalidation import CacheInvalidationQueue, InvalidationTarget
from .models import Actor, PipelineWarning
from .ports import AuditStore, CacheBackend, PersistenceBackend
from .unit_of_work import UnitOfWork

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_RETRYABLE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"deadlock",
        r"lock wait timeout",
        r"try restarting transaction",
        r"serialization failure",
        r"could not serialize",
        r"connection lost",
        r"timeout",
    )
)


def is_retryable_error(exc: BaseException) -> bool:
    """Return True for storage failures worth re-running the whole unit of work."""

    if not isinstance(exc, (StorageFailureError, sa_exc.SQLAlchemyError)):
        return False
    current: BaseException | None = exc
    while current is not None:
        message = str(current)
        if any(pattern.search(message) for pattern in _RETRYABLE_PATTERNS):
            return True
        current = current.__cause__
    return False


@dataclass(slots=True)
class TransactionResult(Generic[T]):
    """Outcome of :meth:`TransactionCoordinator.run`."""

    value: T
    label: str
    warnings: list[PipelineWarning] = field(default_factory=list)
    duration_ms: float = 0.0
    committed: bool = True

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


@dataclass(slots=True)
class TransactionMetrics:
    total: int = 0
    successful: int = 0
    failed: int = 0
    total_duration_ms: float = 0.0

    def snapshot(self) -> dict[str, float | int]:
        success_rate = (self.successful / self.total * 100) if self.total else 0.0
        average = (self.total_duration_ms / self.total) if self.total else 0.0
        return {
            "total_transactions": self.total,
            "successful_transactions": self.successful,
            "failed_transactions": self.failed,
            "success_rate_percent": round(success_rate, 2),
            "average_duration_ms": round(average, 2),
            "total_duration_ms": round(self.total_duration_ms, 2),
        }


class TransactionCoordinator:
    """Runs business callables inside a (possibly nested) unit of work."""

    def __init__(
        self,
        persistence: PersistenceBackend,
        cache: CacheBackend,
        audit_store: AuditStore,
        *,
        service_name: str = "backoffice",
        max_retries: int = 3,
        retry_delay_ms: int = 100,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if retry_delay_ms < 0:
            raise ValueError("retry_delay_ms cannot be negative")
        self._persistence = persistence
        self._cache = cache
        self._audit_store = audit_store
        self._service_name = service_name
        self._max_retries = max_retries
        self._retry_delay_ms = retry_delay_ms
        self._sleep = sleep or time.sleep
        self._current: ContextVar[UnitOfWork | None] = ContextVar(
            f"backoffice_unit_of_work_{id(self)}", default=None
        )
        self._metrics = TransactionMetrics()
        self._metrics_lock = Lock()

    @property
    def service_name(self) -> str:
        return self._service_name

    def current_unit_of_work(self) -> UnitOfWork | None:
        return self._current.get()

    def in_transaction(self) -> bool:
        return self._current.get() is not None

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------
    def transaction(
        self,
        body: Callable[[], T],
        label: str | None = None,
        *,
        actor: Actor | None = None,
        stacklevel: int = 2,
    ) -> T:
        """Run ``body`` atomically and return its value.

        Post-commit side-effect failures are emitted as
        :class:`~backoffice.exceptions.SideEffectWarning` subclasses; use
        :meth:`run` to receive them as data instead.
        ``stacklevel`` is forwarded to :func:`warnings.warn` so wrappers can
        point the warning at their own caller.
        """

        result = self.run(body, label, actor=actor)
        for failure in result.warnings:
            warnings.warn(str(failure), failure.category, stacklevel=stacklevel)
        return result.value

    def run(
        self,
        body: Callable[[], T],
        label: str | None = None,
        *,
        actor: Actor | None = None,
    ) -> TransactionResult[T]:
        unit_of_work = self._current.get()
        if unit_of_work is not None:
            return self._run_nested(unit_of_work, body)
        return self._run_outermost(body, label or self._default_label(), actor)

    def transaction_with_retry(
        self,
        body: Callable[[], T],
        label: str | None = None,
        *,
        actor: Actor | None = None,
        max_retries: int | None = None,
        retry_delay_ms: int | None = None,
        stacklevel: int = 2,
    ) -> T:
        """Re-run the whole unit of work on deadlocks and similar storage errors."""

        if self.in_transaction():
            # the outer unit of work owns the retry decision
            return self.transaction(body, label, actor=actor, stacklevel=stacklevel + 1)

        retries = self._max_retries if max_retries is None else max_retries
        delay_ms = self._retry_delay_ms if retry_delay_ms is None else retry_delay_ms
        attempt = 0
        while True:
            try:
                return self.transaction(body, label, actor=actor, stacklevel=stacklevel + 1)
            except Exception as exc:
                if attempt >= retries or not is_retryable_error(exc):
                    raise
                attempt += 1
                logger.warning(
                    "transaction.retry",
                    label=label,
                    attempt=attempt,
                    max_retries=retries,
                    error=str(exc),
                )
                if delay_ms > 0:
                    self._sleep(delay_ms / 1000)

    def queue_cache_operation(self, target: InvalidationTarget, *, stacklevel: int = 2) -> None:
        """Queue an invalidation for the active unit of work.

        Outside of a unit of work there is nothing to wait for, so the
        invalidation is applied immediately.
        """

        unit_of_work = self._current.get()
        if unit_of_work is not None:
            unit_of_work.invalidations.queue(target)
            return

        immediate = CacheInvalidationQueue()
        immediate.queue(target)
        for failure in immediate.flush(self._cache):
            warnings.warn(str(failure), failure.category, stacklevel=stacklevel)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------
    def performance_metrics(self) -> dict[str, float | int]:
        with self._metrics_lock:
            return self._metrics.snapshot()

    def reset_metrics(self) -> None:
        with self._metrics_lock:
            self._metrics = TransactionMetrics()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _default_label(self) -> str:
        return f"{self._service_name}_{uuid4().hex[:13]}"

    def _run_nested(
        self, unit_of_work: UnitOfWork, body: Callable[[], T]
    ) -> TransactionResult[T]:
        unit_of_work.enter()
        try:
            value = body()
        except BaseException as exc:
            unit_of_work.mark_rollback_only(exc)
            raise
        finally:
            unit_of_work.exit()
        return TransactionResult(value=value, label=unit_of_work.label, committed=False)

    def _run_outermost(
        self, body: Callable[[], T], label: str, actor: Actor | None
    ) -> TransactionResult[T]:
        unit_of_work = UnitOfWork(label=label, actor=actor)
        try:
            self._persistence.begin()
        except Exception as exc:
            self._record_outcome(success=False, duration_ms=unit_of_work.elapsed_ms())
            logger.error("transaction.begin.failed", label=label, error=str(exc))
            raise self._storage_failure(exc, f"could not begin transaction '{label}'") from exc

        token = self._current.set(unit_of_work)
        try:
            with structlog.contextvars.bound_contextvars(transaction=label):
                value = self._execute(unit_of_work, body)
        finally:
            self._current.reset(token)

        # the unit of work is detached from the context before side effects run,
        # so callables queued for invalidation cannot join it
        flush_warnings = unit_of_work.invalidations.flush(self._cache)
        audit_records = unit_of_work.take_audit()
        flush_warnings.extend(persist_audit_records(self._audit_store, audit_records))

        duration_ms = unit_of_work.elapsed_ms()
        self._record_outcome(success=True, duration_ms=duration_ms)
        logger.debug(
            "transaction.committed",
            label=label,
            duration_ms=round(duration_ms, 2),
            audit_records=len(audit_records),
            warnings=len(flush_warnings),
        )
        return TransactionResult(
            value=value,
            label=label,
            warnings=flush_warnings,
            duration_ms=duration_ms,
        )

    def _execute(self, unit_of_work: UnitOfWork, body: Callable[[], T]) -> T:
        label = unit_of_work.label
        unit_of_work.enter()
        try:
            value = body()
        except BaseException as exc:
            unit_of_work.mark_rollback_only(exc)
            self._rollback(unit_of_work)
            logger.warning(
                "transaction.rolled_back",
                label=label,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if isinstance(exc, sa_exc.SQLAlchemyError):
                raise translate_storage_error(exc) from exc
            raise
        finally:
            unit_of_work.exit()

        if unit_of_work.rollback_only:
            self._rollback(unit_of_work)
            logger.warning(
                "transaction.rolled_back",
                label=label,
                reason="rollback_only",
                error_type=type(unit_of_work.failure).__name__,
            )
            raise TransactionRolledBackError(
                f"transaction '{label}' was rolled back because a nested operation failed"
            ) from unit_of_work.failure

        try:
            self._persistence.commit()
        except Exception as exc:
            self._rollback(unit_of_work)
            logger.error("transaction.commit.failed", label=label, error=str(exc))
            raise TransactionCommitError(
                f"commit failed for transaction '{label}': {exc}"
            ) from exc

        unit_of_work.mark_committed()
        return value

    def _rollback(self, unit_of_work: UnitOfWork) -> None:
        try:
            self._persistence.rollback()
        except Exception:
            # the original failure is what the caller needs to see
            logger.exception("transaction.rollback.failed", label=unit_of_work.label)
        finally:
            invalidations, audit_records = unit_of_work.mark_rolled_back()
            self._record_outcome(success=False, duration_ms=unit_of_work.elapsed_ms())
        if invalidations or audit_records:
            logger.debug(
                "transaction.side_effects.discarded",
                label=unit_of_work.label,
                invalidations=invalidations,
                audit_records=audit_records,
            )

    def _record_outcome(self, *, success: bool, duration_ms: float) -> None:
        with self._metrics_lock:
            self._metrics.total += 1
            self._metrics.total_duration_ms += duration_ms
            if success:
                self._metrics.successful += 1
            else:
                self._metrics.failed += 1

    @staticmethod
    def _storage_failure(exc: Exception, message: str) -> StorageFailureError:
        if isinstance(exc, StorageFailureError):
            return exc
        if isinstance(exc, sa_exc.SQLAlchemyError):
            return translate_storage_error(exc)
        return StorageFailureError(f"{message}: {exc}")


__all__ = [
    "TransactionCoordinator",
    "TransactionMetrics",
    "TransactionResult",
    "is_retryable_error",
]
