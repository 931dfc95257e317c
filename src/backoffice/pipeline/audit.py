"""Audit recording bound to the enclosing unit of work."""

from __future__ import annotations

import copy
import warnings
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

import structlog

from .models import Actor, AuditRecord, PipelineWarning, WarningSource
from .ports import AuditStore

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .coordinator import TransactionCoordinator

logger = structlog.get_logger(__name__)


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


def persist_audit_records(
    store: AuditStore, records: Iterable[AuditRecord]
) -> list[PipelineWarning]:
    """Write ``records`` one by one and report each failure as a warning."""

    failures: list[PipelineWarning] = []
    for record in records:
        try:
            accepted = store.insert(record)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
        else:
            if accepted is not False:
                continue
            error = "audit store rejected the record"
        logger.error(
            "audit.write.failed",
            record_id=record.record_id,
            action_type=record.action_type,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            error=error,
        )
        failures.append(
            PipelineWarning(
                source=WarningSource.AUDIT,
                message=error,
                target=f"{record.action_type} {record.entity_type}#{record.entity_id}",
            )
        )
    return failures


class AuditRecorder:
    """Builds audit records and defers them to the active unit of work.

    Inside ``transaction()`` records are buffered and written only after the
    outermost commit. Outside of any unit of work a record is written
    immediately; a failed immediate write is logged and raised as an
    :class:`~backoffice.exceptions.AuditWriteWarning` instead of an error.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        store: AuditStore,
        *,
        service_name: str | None = None,
        enabled: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._store = store
        self._service_name = service_name
        self._enabled = enabled
        self._clock = clock or _default_clock

    @property
    def enabled(self) -> bool:
        return self._enabled

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
        stacklevel: int = 2,
    ) -> None:
        if not action_type:
            raise ValueError("action_type must not be empty")
        if not entity_type:
            raise ValueError("entity_type must not be empty")
        if not self._enabled:
            return

        unit_of_work = self._coordinator.current_unit_of_work()
        effective_actor = actor
        if effective_actor is None and unit_of_work is not None:
            effective_actor = unit_of_work.actor

        merged_context: dict[str, Any] = {}
        if self._service_name:
            merged_context["service"] = self._service_name
        if unit_of_work is not None:
            merged_context["transaction"] = unit_of_work.label
        if effective_actor is not None:
            merged_context.update(effective_actor.as_context())
        merged_context.update(context or {})

        record = AuditRecord(
            action_type=action_type,
            entity_type=entity_type,
            entity_id=str(entity_id),
            old_values=copy.deepcopy(dict(old_values)) if old_values is not None else None,
            new_values=copy.deepcopy(dict(new_values)) if new_values is not None else None,
            actor_id=effective_actor.actor_id if effective_actor is not None else None,
            context=merged_context,
            created_at=self._clock(),
        )

        if unit_of_work is not None:
            unit_of_work.buffer_audit(record)
            return

        for failure in persist_audit_records(self._store, [record]):
            warnings.warn(str(failure), failure.category, stacklevel=stacklevel)


__all__ = ["AuditRecorder", "persist_audit_records"]
