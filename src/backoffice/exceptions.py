"""Error taxonomy shared by the mutation pipeline and entity services."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import exc as sa_exc

__all__ = [
    "AppError",
    "BusinessError",
    "ValidationError",
    "NotFoundError",
    "AuthorizationError",
    "DomainError",
    "PipelineError",
    "StorageFailureError",
    "DatabaseOperationError",
    "IntegrityConstraintViolation",
    "TransactionCommitError",
    "TransactionRolledBackError",
    "BatchAbort",
    "NoActiveTransactionError",
    "SideEffectWarning",
    "CacheInvalidationWarning",
    "AuditWriteWarning",
    "ensure_found",
    "handle_sqlalchemy_errors",
    "translate_storage_error",
]


class AppError(Exception):
    """Base class for application specific errors."""


class BusinessError(AppError):
    """Base class for validation, domain, authorization and lookup failures."""


class ValidationError(BusinessError):
    """Raised when input violates a business rule."""


class NotFoundError(BusinessError):
    """Raised when a record could not be located."""


class AuthorizationError(BusinessError):
    """Raised when the actor is not allowed to perform an operation."""


class DomainError(BusinessError):
    """Raised for domain invariants that are neither validation nor lookup."""


class PipelineError(AppError):
    """Base class for infrastructure failures surfaced by the pipeline."""


class StorageFailureError(PipelineError):
    """Raised when the persistence backend cannot complete an operation."""


class DatabaseOperationError(StorageFailureError):
    """Raised for unexpected database errors."""


class IntegrityConstraintViolation(StorageFailureError):
    """Raised when a database constraint is violated."""


class TransactionCommitError(StorageFailureError):
    """Raised when the outermost commit fails and the work was rolled back."""


class TransactionRolledBackError(PipelineError):
    """Raised when an inner failure was swallowed but the unit of work was doomed."""


class NoActiveTransactionError(PipelineError):
    """Raised when a session is requested outside of any unit of work."""


class BatchAbort(Exception):
    """Sentinel raised by batch item operations to stop a fail-fast batch."""


class SideEffectWarning(UserWarning):
    """A cache or audit side effect failed without undoing business data."""


class CacheInvalidationWarning(SideEffectWarning):
    """A queued cache invalidation could not be applied."""


class AuditWriteWarning(SideEffectWarning):
    """An audit record could not be written to the audit store."""


@dataclass(slots=True)
class _EntityContext:
    """Internal helper describing the entity for error messages."""

    entity: str | None = None

    def format(self, message: str) -> str:
        if self.entity:
            return f"{self.entity}: {message}"
        return message


def ensure_found(record: object | None, *, entity: str, identifier: object) -> object:
    """Ensure a record exists, otherwise raise :class:`NotFoundError`."""

    if record is None:
        raise NotFoundError(f"{entity} '{identifier}' not found")
    return record


def translate_storage_error(
    exc: Exception, *, entity: str | None = None
) -> StorageFailureError:
    """Map a SQLAlchemy exception onto the pipeline storage hierarchy."""

    context = _EntityContext(entity)
    if isinstance(exc, sa_exc.IntegrityError):
        return IntegrityConstraintViolation(context.format("integrity constraint violated"))
    if isinstance(exc, sa_exc.DBAPIError):
        return DatabaseOperationError(
            context.format(f"database operation failed: {exc.orig}")
        )
    return DatabaseOperationError(context.format(str(exc)))


@contextmanager
def handle_sqlalchemy_errors(*, entity: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy errors into storage failures."""

    try:
        yield
    except sa_exc.SQLAlchemyError as exc:
        raise translate_storage_error(exc, entity=entity) from exc
