"""Deferred cache invalidation applied only after a successful commit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterator, Union

import structlog

from .models import PipelineWarning, WarningSource
from .ports import CacheBackend

logger = structlog.get_logger(__name__)

WILDCARD = "*"

InvalidationTarget = Union[str, Callable[[], object]]


@dataclass(frozen=True, slots=True)
class CacheInvalidationTarget:
    """Exact key, glob pattern or callable naming cache entries to drop.

    A string containing ``*`` is a pattern and is matched with glob
    semantics by the backend; any other string is an exact key.
    """

    value: InvalidationTarget

    @property
    def is_callable(self) -> bool:
        return not isinstance(self.value, str)

    @property
    def is_pattern(self) -> bool:
        return isinstance(self.value, str) and WILDCARD in self.value

    @property
    def dedup_key(self) -> tuple[str, object]:
        if isinstance(self.value, str):
            return ("key", self.value)
        return ("callable", id(self.value))

    def describe(self) -> str:
        if isinstance(self.value, str):
            return self.value
        return getattr(self.value, "__qualname__", repr(self.value))

    def apply(self, cache: CacheBackend) -> None:
        if not isinstance(self.value, str):
            self.value()
        elif self.is_pattern:
            cache.delete_matching(self.value)
        else:
            cache.delete_key(self.value)


class CacheInvalidationQueue:
    """FIFO of invalidation targets owned by one outermost unit of work."""

    def __init__(self) -> None:
        self._targets: list[CacheInvalidationTarget] = []
        self._seen: set[tuple[str, object]] = set()

    def __len__(self) -> int:
        return len(self._targets)

    def __iter__(self) -> Iterator[CacheInvalidationTarget]:
        return iter(tuple(self._targets))

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(target.describe() for target in self._targets)

    def queue(self, target: InvalidationTarget) -> bool:
        """Append ``target``; returns ``False`` when it was already queued."""

        if isinstance(target, str):
            if not target:
                raise ValueError("cache invalidation target must not be empty")
        elif not callable(target):
            raise TypeError(
                f"cache invalidation target must be a string or callable, got {type(target).__name__}"
            )
        entry = CacheInvalidationTarget(target)
        if entry.dedup_key in self._seen:
            return False
        self._seen.add(entry.dedup_key)
        self._targets.append(entry)
        return True

    def flush(self, cache: CacheBackend) -> list[PipelineWarning]:
        """Apply every queued target in order, best-effort per target."""

        targets = self._take()
        warnings: list[PipelineWarning] = []
        for target in targets:
            try:
                target.apply(cache)
            except Exception as exc:
                logger.warning(
                    "cache.invalidation.failed",
                    target=target.describe(),
                    pattern=target.is_pattern,
                    error=str(exc),
                )
                warnings.append(
                    PipelineWarning(
                        source=WarningSource.CACHE,
                        message=str(exc) or type(exc).__name__,
                        target=target.describe(),
                    )
                )
        if targets:
            logger.debug(
                "cache.invalidation.flushed",
                targets=len(targets),
                failed=len(warnings),
            )
        return warnings

    def discard(self) -> int:
        """Drop every queued target without touching the cache."""

        return len(self._take())

    def _take(self) -> list[CacheInvalidationTarget]:
        targets, self._targets = self._targets, []
        self._seen.clear()
        return targets


__all__ = [
    "CacheInvalidationQueue",
    "CacheInvalidationTarget",
    "InvalidationTarget",
    "WILDCARD",
]
