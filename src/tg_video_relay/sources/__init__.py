"""Message source implementations."""

from .base import MessageSource

__all__ = ["MessageSource"]
