"""State of one logical transaction shared by every nesting level."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from .invalidation import CacheInvalidationQueue
from .models import Actor, AuditRecord


class UnitOfWorkState(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(slots=True)
class UnitOfWork:
    """Queues and bookkeeping for one outermost ``transaction()`` call."""

    label: str
    actor: Actor | None = None
    depth: int = 0
    state: UnitOfWorkState = UnitOfWorkState.ACTIVE
    rollback_only: bool = False
    failure: BaseException | None = None
    invalidations: CacheInvalidationQueue = field(default_factory=CacheInvalidationQueue)
    pending_audit: list[AuditRecord] = field(default_factory=list)
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def is_active(self) -> bool:
        return self.state is UnitOfWorkState.ACTIVE

    def enter(self) -> int:
        self.depth += 1
        return self.depth

    def exit(self) -> int:
        if self.depth <= 0:
            raise RuntimeError(f"unit of work '{self.label}' exited more often than entered")
        self.depth -= 1
        return self.depth

    def mark_rollback_only(self, exc: BaseException) -> None:
        # first failure wins; it is the cause reported to the caller
        if not self.rollback_only:
            self.failure = exc
        self.rollback_only = True

    def buffer_audit(self, record: AuditRecord) -> None:
        if not self.is_active:
            raise RuntimeError(f"unit of work '{self.label}' is no longer active")
        self.pending_audit.append(record)

    def take_audit(self) -> list[AuditRecord]:
        records, self.pending_audit = self.pending_audit, []
        return records

    def mark_committed(self) -> None:
        self.state = UnitOfWorkState.COMMITTED

    def mark_rolled_back(self) -> tuple[int, int]:
        """Discard queued side effects, returning (invalidations, audit records)."""

        self.state = UnitOfWorkState.ROLLED_BACK
        discarded_audit = len(self.pending_audit)
        self.pending_audit = []
        return self.invalidations.discard(), discarded_audit

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000


__all__ = ["UnitOfWork", "UnitOfWorkState"]
