"""Kernel service and selector base classes."""

from pos_kernel.services.base import BaseSelector, BaseService

__all__ = [
    "BaseSelector",
    "BaseService",
]
