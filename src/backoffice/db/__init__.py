"""Database models and bootstrap helpers."""

from .db_init import init_db
from .db_models import AuditLogModel, Base

__all__ = ["AuditLogModel", "Base", "init_db"]
