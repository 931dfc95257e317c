"""Chunked batch execution with one unit of work per item."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Generic, Iterable, Optional, Sequence, TypeVar

import structlog

from ..exceptions import BatchAbort
from .models import Actor

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .coordinator import TransactionCoordinator

logger = structlog.get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

DEFAULT_CHUNK_SIZE = 100


class ProgressStatus(str, Enum):
    """Value a progress callback may return to classify the finished item."""

    CONTINUE = "continue"
    SKIP = "skip"


class ItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class BatchItemOutcome(Generic[ResultT]):
    index: int
    item_id: Any
    status: ItemStatus
    value: ResultT | None = None
    error: str | None = None
    error_type: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "item_id": self.item_id,
            "status": self.status.value,
            "value": self.value,
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass(slots=True)
class BatchResult(Generic[ResultT]):
    """Aggregate and per-item report of one ``batch_operation`` call."""

    total: int
    outcomes: list[BatchItemOutcome[ResultT]] = field(default_factory=list)
    aborted: bool = False

    @property
    def succeeded(self) -> int:
        return self._count(ItemStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(ItemStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(ItemStatus.SKIPPED)

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def values(self) -> list[ResultT | None]:
        return [
            outcome.value
            for outcome in self.outcomes
            if outcome.status is ItemStatus.SUCCEEDED
        ]

    @property
    def errors(self) -> dict[Any, str]:
        return {
            outcome.item_id: outcome.error or ""
            for outcome in self.outcomes
            if outcome.status is ItemStatus.FAILED
        }

    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "aborted": self.aborted,
            "details": [outcome.as_dict() for outcome in self.outcomes],
        }

    def _count(self, status: ItemStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)


ItemOperation = Callable[[ItemT, int], ResultT]
ProgressCallback = Callable[[ItemT, int, int], Optional[ProgressStatus]]


class BatchRunner:
    """Apply an operation to many items, isolating per-item failures.

    Each item runs in its own ``transaction()``, so a failing item rolls back
    only its own writes, cache invalidations and audit records. When the
    runner is called inside an active unit of work the items join it and a
    failing item dooms the enclosing transaction.
    """

    def __init__(
        self,
        coordinator: TransactionCoordinator,
        *,
        default_chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if default_chunk_size < 1:
            raise ValueError("default_chunk_size must be at least 1")
        self._coordinator = coordinator
        self._default_chunk_size = default_chunk_size

    def run(
        self,
        items: Iterable[ItemT],
        operation: ItemOperation[ItemT, ResultT],
        chunk_size: int | None = None,
        progress: ProgressCallback[ItemT] | None = None,
        *,
        fail_fast_on: tuple[type[BaseException], ...] = (),
        identify: Callable[[ItemT], Any] | None = None,
        label: str | None = None,
        actor: Actor | None = None,
    ) -> BatchResult[ResultT]:
        size = self._default_chunk_size if chunk_size is None else chunk_size
        if size < 1:
            raise ValueError("chunk_size must be at least 1")

        materialized: Sequence[ItemT] = list(items)
        total = len(materialized)
        result: BatchResult[ResultT] = BatchResult(total=total)
        prefix = label or "batch"

        if self._coordinator.in_transaction():
            logger.warning("batch.joined_transaction", label=prefix, total=total)

        for start in range(0, total, size):
            chunk = materialized[start : start + size]
            logger.debug(
                "batch.chunk.started",
                label=prefix,
                start=start,
                end=start + len(chunk),
                total=total,
            )
            for offset, item in enumerate(chunk):
                index = start + offset
                outcome, error = self._run_item(
                    item,
                    index,
                    operation,
                    identify=identify,
                    label=f"{prefix}_{index}",
                    actor=actor,
                )
                result.outcomes.append(outcome)
                if progress is not None:
                    self._report_progress(progress, item, index, total, outcome)

                if error is not None and fail_fast_on and isinstance(error, fail_fast_on):
                    result.aborted = True
                    logger.warning(
                        "batch.aborted",
                        label=prefix,
                        index=index,
                        processed=result.processed,
                        total=total,
                    )
                    return result

        logger.info(
            "batch.completed",
            label=prefix,
            total=total,
            succeeded=result.succeeded,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    def _run_item(
        self,
        item: ItemT,
        index: int,
        operation: ItemOperation[ItemT, ResultT],
        *,
        identify: Callable[[ItemT], Any] | None,
        label: str,
        actor: Actor | None,
    ) -> tuple[BatchItemOutcome[ResultT], Exception | None]:
        item_id = identify(item) if identify is not None else index
        try:
            value = self._coordinator.transaction(
                lambda: operation(item, index), label, actor=actor
            )
        except Exception as exc:
            logger.warning(
                "batch.item.failed",
                index=index,
                item_id=item_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            failed: BatchItemOutcome[ResultT] = BatchItemOutcome(
                index=index,
                item_id=item_id,
                status=ItemStatus.FAILED,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )
            return failed, exc
        succeeded: BatchItemOutcome[ResultT] = BatchItemOutcome(
            index=index, item_id=item_id, status=ItemStatus.SUCCEEDED, value=value
        )
        return succeeded, None

    @staticmethod
    def _report_progress(
        progress: ProgressCallback[ItemT],
        item: ItemT,
        index: int,
        total: int,
        outcome: BatchItemOutcome[Any],
    ) -> None:
        try:
            status = progress(item, index, total)
        except Exception as exc:
            # the item already finished; a broken callback only annotates it
            logger.warning(
                "batch.progress.failed",
                index=index,
                item_id=outcome.item_id,
                error=str(exc),
            )
            if outcome.error is None:
                outcome.error = f"progress callback failed: {exc}"
            return
        if status is ProgressStatus.SKIP and outcome.status is ItemStatus.SUCCEEDED:
            outcome.status = ItemStatus.SKIPPED


__all__ = [
    "BatchAbort",
    "BatchItemOutcome",
    "BatchResult",
    "BatchRunner",
    "DEFAULT_CHUNK_SIZE",
    "ItemStatus",
    "ProgressStatus",
]
