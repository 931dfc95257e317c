"""Core configuration primitives."""

from .config import PipelineSettings

__all__ = ["PipelineSettings"]
