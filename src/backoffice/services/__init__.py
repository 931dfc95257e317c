"""Service layer built on the mutation pipeline."""

from .base_service import BaseService

__all__ = ["BaseService"]
