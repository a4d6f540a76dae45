from __future__ import annotations

import logging
from datetime import timezone
from pathlib import Path
from typing import Any, Callable, Optional

from telethon.sync import TelegramClient
from telethon.tl.types import (
    Document,
    DocumentAttributeFilename,
    DocumentAttributeVideo,
    MessageMediaDocument,
)

from ..errors import SourceUnavailable
from ..models import NO_ATTACHMENT, Attachment, AttachmentKind, SourceMessage, VideoItem
from .base import MessageSource


def classify_media(media: Any) -> Attachment:
    if media is None:
        return NO_ATTACHMENT
    if not isinstance(media, MessageMediaDocument) or not isinstance(media.document, Document):
        return Attachment(kind=AttachmentKind.OTHER)

    document = media.document
    mime_type = document.mime_type or ""
    file_name = None
    duration = None
    for attribute in document.attributes or []:
        if isinstance(attribute, DocumentAttributeFilename):
            file_name = attribute.file_name
        elif isinstance(attribute, DocumentAttributeVideo):
            duration = int(attribute.duration)

    kind = AttachmentKind.VIDEO if mime_type.startswith("video/") else AttachmentKind.OTHER
    return Attachment(
        kind=kind,
        document_id=str(document.id),
        file_name=file_name,
        file_size=int(document.size or 0),
        duration=duration,
        mime_type=mime_type or None,
    )


class TelegramChannelSource(MessageSource):
    name = "telegram"

    def __init__(
        self,
        client: TelegramClient,
        channel: str,
        phone_number: Optional[str] = None,
        password: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        channel = channel.strip().lstrip("@")
        if not channel:
            raise ValueError("TELEGRAM_CHANNEL is required for Telegram source")
        self.client = client
        self.channel = channel
        self.phone_number = phone_number
        self.password = password
        self.logger = logger or logging.getLogger(__name__)
        self._entity = None

    @classmethod
    def from_credentials(
        cls,
        session_file: Path,
        api_id: int,
        api_hash: str,
        channel: str,
        phone_number: Optional[str] = None,
        password: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "TelegramChannelSource":
        Path(session_file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        client = TelegramClient(str(session_file), api_id, api_hash, connection_retries=5)
        return cls(client, channel, phone_number=phone_number, password=password, logger=logger)

    def connect(self) -> None:
        try:
            self.client.start(phone=self.phone_number, password=self.password)
        except Exception as exc:
            raise SourceUnavailable(f"telegram login failed: {exc}") from exc
        self.logger.info("telegram client connected: channel=%s", self.channel)

    def close(self) -> None:
        try:
            self.client.disconnect()
        except Exception:
            self.logger.exception("telegram disconnect failed")

    def _channel_entity(self):
        if self._entity is None:
            self._entity = self.client.get_entity(self.channel)
        return self._entity

    def fetch_messages(self, after_id: int, limit: int) -> list[SourceMessage]:
        messages = self.client.get_messages(
            self._channel_entity(),
            limit=limit,
            min_id=after_id,
            reverse=True,
        )
        result: list[SourceMessage] = []
        for message in messages or []:
            date = message.date
            if date is not None and date.tzinfo is None:
                date = date.replace(tzinfo=timezone.utc)
            result.append(
                SourceMessage(
                    message_id=int(message.id),
                    date=date,
                    attachment=classify_media(message.media),
                )
            )
        return result

    def download_video(self, item: VideoItem, destination: Path) -> Path:
        message = self.client.get_messages(self._channel_entity(), ids=item.source_message_id)
        if message is None or message.media is None:
            raise FileNotFoundError(
                f"message {item.source_message_id} no longer has media for video {item.id}"
            )
        attachment = classify_media(message.media)
        if attachment.document_id != item.id:
            raise FileNotFoundError(
                f"message {item.source_message_id} media changed: expected={item.id} got={attachment.document_id}"
            )

        downloaded = self.client.download_media(
            message,
            file=str(destination),
            progress_callback=self._progress_logger(item.file_name),
        )
        if not downloaded:
            raise FileNotFoundError(f"download returned nothing for video {item.id}")
        return Path(downloaded)

    def _progress_logger(self, file_name: str) -> Callable[[int, int], None]:
        """Build a telethon progress callback that logs once per 10% step."""
        last_step = -1

        def report(received: int, total: int) -> None:
            nonlocal last_step
            if not total:
                return
            step = min(received * 10 // total, 10)
            if step > last_step:
                last_step = step
                self.logger.debug("download progress: file=%s percent=%s", file_name, step * 10)

        return report
