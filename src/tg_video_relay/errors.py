from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import BatchDeliveryReport, DeliveryResult, VideoItem


class RelayError(Exception):
    """Base class for pipeline errors."""


class SourceUnavailable(RelayError):
    """The message source could not be reached or rejected the session."""


class TransferError(RelayError):
    def __init__(self, message: str, item: Optional["VideoItem"] = None):
        super().__init__(message)
        self.item = item


class DeliveryError(RelayError):
    def __init__(
        self,
        message: str,
        result: Optional["DeliveryResult"] = None,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.result = result
        self.attempts = attempts


class BatchDeliveryError(DeliveryError):
    def __init__(self, message: str, report: "BatchDeliveryReport"):
        super().__init__(message)
        self.report = report


class CursorPersistError(RelayError):
    """The cursor could not be read from or written to stable storage."""


class RunCancelled(RelayError):
    """Cancellation was requested at a suspension point."""
