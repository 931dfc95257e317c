from __future__ import annotations

from typing import Any, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backoffice.db.db_init import init_db
from backoffice.infrastructure.audit_store import InMemoryAuditStore
from backoffice.infrastructure.cache.memory import InMemoryCacheBackend
from backoffice.pipeline.coordinator import TransactionCoordinator
from backoffice.pipeline.models import AuditRecord


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingPersistence:
    """Persistence backend that only records the boundary calls it receives."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.fail_on_begin: Exception | None = None
        self.fail_on_commit: list[Exception] = []
        self.fail_on_rollback: Exception | None = None

    def begin(self) -> None:
        if self.fail_on_begin is not None:
            raise self.fail_on_begin
        self.events.append("begin")

    def commit(self) -> None:
        if self.fail_on_commit:
            raise self.fail_on_commit.pop(0)
        self.events.append("commit")

    def rollback(self) -> None:
        self.events.append("rollback")
        if self.fail_on_rollback is not None:
            raise self.fail_on_rollback

    def count(self, event: str) -> int:
        return self.events.count(event)


class RecordingCache(InMemoryCacheBackend):
    """In-memory cache that logs deletions and can fail selected targets."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.deleted_keys: list[str] = []
        self.deleted_patterns: list[str] = []
        self.failing_targets: set[str] = set()
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key: str) -> Any | None:
        if self.fail_reads:
            raise ConnectionError("cache read unavailable")
        return super().get(key)

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self.fail_writes:
            raise ConnectionError("cache write unavailable")
        super().set(key, value, ttl_seconds)

    def delete_key(self, key: str) -> bool:
        if key in self.failing_targets:
            raise ConnectionError(f"cannot delete {key}")
        self.deleted_keys.append(key)
        return super().delete_key(key)

    def delete_matching(self, pattern: str) -> int:
        if pattern in self.failing_targets:
            raise ConnectionError(f"cannot delete {pattern}")
        self.deleted_patterns.append(pattern)
        return super().delete_matching(pattern)


class FlakyAuditStore(InMemoryAuditStore):
    """Audit store rejecting or raising for chosen action types."""

    def __init__(self) -> None:
        super().__init__()
        self.reject_actions: set[str] = set()
        self.raise_actions: set[str] = set()

    def insert(self, record: AuditRecord) -> bool:
        if record.action_type in self.raise_actions:
            raise RuntimeError("audit store offline")
        if record.action_type in self.reject_actions:
            return False
        return super().insert(record)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def persistence() -> RecordingPersistence:
    return RecordingPersistence()


@pytest.fixture
def cache(clock: FakeClock) -> RecordingCache:
    return RecordingCache(clock=clock)


@pytest.fixture
def audit_store() -> FlakyAuditStore:
    return FlakyAuditStore()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def coordinator(
    persistence: RecordingPersistence,
    cache: RecordingCache,
    audit_store: FlakyAuditStore,
    sleeps: list[float],
) -> TransactionCoordinator:
    return TransactionCoordinator(
        persistence,
        cache,
        audit_store,
        service_name="catalog",
        max_retries=2,
        retry_delay_ms=10,
        sleep=sleeps.append,
    )


@pytest.fixture
def sqlite_engine(tmp_path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite:///{tmp_path / 'backoffice.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=sqlite_engine, expire_on_commit=False)
