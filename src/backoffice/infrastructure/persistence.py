"""SQLAlchemy persistence backend with one session per execution context."""

from __future__ import annotations

from collections.abc import Callable
from contextvars import ContextVar
from typing import Any, TypeVar

import structlog
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import NoActiveTransactionError, ensure_found, handle_sqlalchemy_errors

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT")


class SqlAlchemyPersistence:
    """Drive a :class:`Session` from the coordinator's begin/commit/rollback.

    Repositories reach the active session through :attr:`session` while a
    unit of work is open; outside of one they get
    :class:`NoActiveTransactionError`.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._current: ContextVar[Session | None] = ContextVar(
            f"backoffice_session_{id(self)}", default=None
        )

    @property
    def session(self) -> Session:
        session = self._current.get()
        if session is None:
            raise NoActiveTransactionError("no active unit of work in this context")
        return session

    def has_session(self) -> bool:
        return self._current.get() is not None

    def begin(self) -> None:
        if self._current.get() is not None:
            raise RuntimeError("a session is already open in this context")
        session = self._session_factory()
        try:
            with handle_sqlalchemy_errors():
                session.begin()
        except Exception:
            session.close()
            raise
        self._current.set(session)

    def commit(self) -> None:
        session = self.session
        with handle_sqlalchemy_errors():
            session.commit()
        # a failed commit keeps the session so rollback() can clean it up
        self._release(session)

    def rollback(self) -> None:
        session = self._current.get()
        if session is None:
            return
        try:
            with handle_sqlalchemy_errors():
                session.rollback()
        finally:
            self._release(session)

    def save(self, entity: ModelT, *, entity_name: str | None = None) -> ModelT:
        """Add ``entity`` and flush so generated keys are populated."""

        session = self.session
        with handle_sqlalchemy_errors(entity=entity_name or type(entity).__name__):
            session.add(entity)
            session.flush()
        return entity

    def find(self, model: type[ModelT], identifier: Any) -> ModelT | None:
        with handle_sqlalchemy_errors(entity=model.__name__):
            return self.session.get(model, identifier)

    def get(self, model: type[ModelT], identifier: Any) -> ModelT:
        record = self.find(model, identifier)
        return ensure_found(record, entity=model.__name__, identifier=identifier)  # type: ignore[return-value]

    def find_all(self, model: type[ModelT], *, limit: int | None = None) -> list[ModelT]:
        statement = select(model)
        if limit is not None:
            statement = statement.limit(limit)
        with handle_sqlalchemy_errors(entity=model.__name__):
            return list(self.session.scalars(statement))

    def delete(self, entity: Any) -> None:
        session = self.session
        with handle_sqlalchemy_errors(entity=type(entity).__name__):
            session.delete(entity)
            session.flush()

    def ping(self) -> bool:
        try:
            with self._session_factory() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("database.ping.failed", error=str(exc))
            return False
        return True

    def _release(self, session: Session) -> None:
        self._current.set(None)
        session.close()


__all__ = ["SqlAlchemyPersistence"]
