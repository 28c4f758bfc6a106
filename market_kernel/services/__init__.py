"""Kernel services."""

from market_kernel.services.base import BaseService

__all__ = ["BaseService"]
