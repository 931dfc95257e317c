"""Application configuration builder."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .core.config import PipelineSettings
from .db.db_init import init_db


@dataclass(slots=True)
class AppConfig:
    settings: PipelineSettings
    database_url: str
    engine: Engine
    session_factory: sessionmaker[Session]


def load_config(settings: PipelineSettings | None = None, *, create_schema: bool = True) -> AppConfig:
    """Build the engine and session factory from ``BACKOFFICE_*`` settings (SQLite by default)."""
    settings = settings or PipelineSettings()
    database_url = settings.database_url
    engine = create_engine(database_url)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)

    if create_schema:
        init_db(engine)

    return AppConfig(
        settings=settings,
        database_url=database_url,
        engine=engine,
        session_factory=session_factory,
    )


__all__ = ["AppConfig", "load_config"]
