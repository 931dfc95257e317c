"""Database initialization helpers."""

from __future__ import annotations

from sqlalchemy.engine import Engine

from .db_models import Base


def init_db(engine: Engine) -> None:
    """Create pipeline-owned tables (audit_log) if they do not exist."""
    Base.metadata.create_all(engine)
