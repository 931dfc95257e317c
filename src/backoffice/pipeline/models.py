"""Value objects passed between the pipeline components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import uuid4

from ..exceptions import AuditWriteWarning, CacheInvalidationWarning, SideEffectWarning


@dataclass(frozen=True, slots=True)
class Actor:
    """Identity on whose behalf a unit of work runs.

    ``actor_id=None`` denotes a system-initiated operation.
    """

    actor_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_system(self) -> bool:
        return self.actor_id is None

    def as_context(self) -> dict[str, str]:
        context: dict[str, str] = {}
        if self.ip_address:
            context["ip_address"] = self.ip_address
        if self.user_agent:
            context["user_agent"] = self.user_agent
        return context


SYSTEM_ACTOR = Actor()


@dataclass(frozen=True, slots=True)
class AuditRecord:
    """Structured fact describing a change, who made it and when."""

    action_type: str
    entity_type: str
    entity_id: str
    old_values: Mapping[str, Any] | None
    new_values: Mapping[str, Any] | None
    actor_id: str | None
    context: Mapping[str, Any]
    created_at: datetime
    record_id: str = field(default_factory=lambda: str(uuid4()))


class WarningSource(str, Enum):
    """Side effect that produced a :class:`PipelineWarning`."""

    CACHE = "cache"
    AUDIT = "audit"


@dataclass(frozen=True, slots=True)
class PipelineWarning:
    """Non-fatal failure of a side effect attached to a committed result."""

    source: WarningSource
    message: str
    target: str | None = None

    @property
    def category(self) -> type[SideEffectWarning]:
        if self.source is WarningSource.CACHE:
            return CacheInvalidationWarning
        return AuditWriteWarning

    def __str__(self) -> str:
        if self.target:
            return f"{self.source.value} side effect failed for {self.target}: {self.message}"
        return f"{self.source.value} side effect failed: {self.message}"


__all__ = [
    "Actor",
    "AuditRecord",
    "PipelineWarning",
    "SYSTEM_ACTOR",
    "WarningSource",
]
