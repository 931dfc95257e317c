"""Back-office transactional mutation pipeline.

Entity services subclass :class:`BaseService` and run their mutations through
``transaction()``; cache invalidations and audit records queued inside a unit
of work are applied only after the outermost commit.
"""

from .container import PipelineContainer, build_container
from .pipeline import (
    SYSTEM_ACTOR,
    Actor,
    BatchResult,
    ProgressStatus,
    TransactionCoordinator,
    TransactionResult,
)
from .services import BaseService

__all__ = [
    "Actor",
    "BaseService",
    "BatchResult",
    "PipelineContainer",
    "ProgressStatus",
    "SYSTEM_ACTOR",
    "TransactionCoordinator",
    "TransactionResult",
    "build_container",
]
