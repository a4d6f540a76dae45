from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def to_iso8601(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Cursor:
    last_message_id: int = 0

    def advanced_to(self, message_id: int) -> "Cursor":
        if message_id <= self.last_message_id:
            return self
        return Cursor(last_message_id=message_id)


class AttachmentKind(str, Enum):
    VIDEO = "video"
    OTHER = "other"
    NONE = "none"


@dataclass(frozen=True)
class Attachment:
    kind: AttachmentKind
    document_id: Optional[str] = None
    file_name: Optional[str] = None
    file_size: int = 0
    duration: Optional[int] = None
    mime_type: Optional[str] = None


NO_ATTACHMENT = Attachment(kind=AttachmentKind.NONE)


@dataclass(frozen=True)
class SourceMessage:
    message_id: int
    date: datetime
    attachment: Attachment = NO_ATTACHMENT


@dataclass(frozen=True)
class VideoItem:
    id: str
    file_name: str
    file_size: int
    duration: Optional[int]
    timestamp: datetime
    source_message_id: int


@dataclass(frozen=True)
class TransferResult:
    storage_key: str
    public_url: str
    container: str


@dataclass(frozen=True)
class NotificationPayload:
    video_url: str
    channel_label: str
    timestamp_iso8601: str

    @classmethod
    def from_transfer(
        cls,
        item: VideoItem,
        result: TransferResult,
        channel_label: str,
    ) -> "NotificationPayload":
        return cls(
            video_url=result.public_url,
            channel_label=channel_label,
            timestamp_iso8601=to_iso8601(item.timestamp),
        )

    def to_json(self) -> dict[str, str]:
        return {
            "video_url": self.video_url,
            "channel": self.channel_label,
            "timestamp": self.timestamp_iso8601,
        }


@dataclass(frozen=True)
class DeliveryResult:
    channel: str
    success: bool
    error_message: Optional[str] = None
    response_excerpt: Optional[str] = None
    status_code: Optional[int] = None
    attempts: int = 1


@dataclass(frozen=True)
class BatchDeliveryReport:
    succeeded: int = 0
    failed: int = 0
    results: list[DeliveryResult] = field(default_factory=list)


@dataclass(frozen=True)
class RunStatistics:
    items_found: int = 0
    items_transferred: int = 0
    items_notified: int = 0
    items_failed: int = 0
    duration_sec: float = 0.0
    cursor_start: Optional[int] = None
    cursor_end: Optional[int] = None
    outcome: str = "completed"
    fatal_error: Optional[str] = None
