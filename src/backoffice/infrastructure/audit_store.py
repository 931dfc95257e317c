"""Audit store implementations."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Mapping

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..db.db_models import AuditLogModel
from ..exceptions import handle_sqlalchemy_errors
from ..pipeline.models import AuditRecord

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 50


def _jsonable(values: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    return json.loads(json.dumps(dict(values), default=str))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _matches(
    record: AuditRecord,
    *,
    entity_type: str | None,
    entity_id: object | None,
    actor_id: str | None,
    action_prefix: str | None,
) -> bool:
    if entity_type is not None and record.entity_type != entity_type:
        return False
    if entity_id is not None and record.entity_id != str(entity_id):
        return False
    if actor_id is not None and record.actor_id != actor_id:
        return False
    if action_prefix is not None and not record.action_type.startswith(action_prefix):
        return False
    return True


class SqlAlchemyAuditStore:
    """Append audit records to the ``audit_log`` table.

    Each insert uses its own short-lived session; records reach the store
    only after the business transaction committed.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def insert(self, record: AuditRecord) -> bool:
        with handle_sqlalchemy_errors(entity="AuditLog"):
            with self._session_factory() as session:
                session.add(
                    AuditLogModel(
                        record_id=record.record_id,
                        actor_id=record.actor_id,
                        action_type=record.action_type,
                        entity_type=record.entity_type,
                        entity_id=record.entity_id,
                        old_values=_jsonable(record.old_values),
                        new_values=_jsonable(record.new_values),
                        context=_jsonable(record.context) or {},
                        performed_at=record.created_at,
                    )
                )
                session.commit()
        return True

    def list_records(
        self,
        *,
        entity_type: str | None = None,
        entity_id: object | None = None,
        actor_id: str | None = None,
        action_prefix: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[AuditRecord]:
        """Return matching records, newest first."""

        if limit < 1:
            raise ValueError("limit must be at least 1")
        if offset < 0:
            raise ValueError("offset cannot be negative")
        statement = select(AuditLogModel)
        if entity_type is not None:
            statement = statement.where(AuditLogModel.entity_type == entity_type)
        if entity_id is not None:
            statement = statement.where(AuditLogModel.entity_id == str(entity_id))
        if actor_id is not None:
            statement = statement.where(AuditLogModel.actor_id == actor_id)
        if action_prefix is not None:
            statement = statement.where(AuditLogModel.action_type.startswith(action_prefix))
        statement = (
            statement.order_by(AuditLogModel.performed_at.desc(), AuditLogModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        with handle_sqlalchemy_errors(entity="AuditLog"):
            with self._session_factory() as session:
                models = list(session.scalars(statement))
        return [self._to_record(model) for model in models]

    def count(self) -> int:
        with handle_sqlalchemy_errors(entity="AuditLog"):
            with self._session_factory() as session:
                return session.scalar(select(func.count()).select_from(AuditLogModel)) or 0

    @staticmethod
    def _to_record(model: AuditLogModel) -> AuditRecord:
        return AuditRecord(
            action_type=model.action_type,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            old_values=model.old_values,
            new_values=model.new_values,
            actor_id=model.actor_id,
            context=model.context or {},
            created_at=_as_utc(model.performed_at),
            record_id=model.record_id,
        )


class InMemoryAuditStore:
    """List-backed audit store for development and tests."""

    def __init__(self) -> None:
        self._records: list[AuditRecord] = []
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def records(self) -> tuple[AuditRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def insert(self, record: AuditRecord) -> bool:
        with self._lock:
            self._records.append(record)
        return True

    def list_records(
        self,
        *,
        entity_type: str | None = None,
        entity_id: object | None = None,
        actor_id: str | None = None,
        action_prefix: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[AuditRecord]:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if offset < 0:
            raise ValueError("offset cannot be negative")
        with self._lock:
            matching = [
                record
                for record in reversed(self._records)
                if _matches(
                    record,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    actor_id=actor_id,
                    action_prefix=action_prefix,
                )
            ]
        return matching[offset : offset + limit]

    def count(self) -> int:
        return len(self)


__all__ = ["DEFAULT_PAGE_SIZE", "InMemoryAuditStore", "SqlAlchemyAuditStore"]
