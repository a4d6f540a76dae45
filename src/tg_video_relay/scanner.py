from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Optional

from .cancellation import CancelToken
from .errors import RunCancelled, SourceUnavailable
from .models import AttachmentKind, Cursor, SourceMessage, VideoItem
from .sources.base import MessageSource

DEFAULT_PAGE_SIZE = 100
DEFAULT_PAGE_DELAY_SEC = 1.5


class MessageScanner:
    """Pages through the source from a cursor and yields video items.

    The throttle between pages is there to stay inside the source's API quota;
    it must stay unless a backoff on rate-limit responses replaces it.
    """

    def __init__(
        self,
        source: MessageSource,
        page_size: int = DEFAULT_PAGE_SIZE,
        page_delay_sec: float = DEFAULT_PAGE_DELAY_SEC,
        cancel_token: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.source = source
        self.page_size = page_size
        self.page_delay_sec = page_delay_sec
        self.cancel_token = cancel_token or CancelToken()
        self.logger = logger or logging.getLogger(__name__)
        self.pages_fetched = 0
        self.last_observed_id = 0

    def scan(self, cursor: Cursor) -> Iterator[VideoItem]:
        position = cursor.last_message_id
        self.pages_fetched = 0
        self.last_observed_id = position

        while True:
            self.cancel_token.raise_if_cancelled()
            messages = self._fetch_page(position)
            self.pages_fetched += 1
            if not messages:
                self.logger.debug("scan reached head: after_id=%s pages=%s", position, self.pages_fetched)
                return

            messages = sorted(messages, key=lambda message: message.message_id)
            newest = messages[-1].message_id
            self.logger.debug(
                "page fetched: after_id=%s count=%s newest=%s",
                position,
                len(messages),
                newest,
            )

            for message in messages:
                if message.message_id <= position:
                    continue
                item = self._to_video_item(message)
                if item is not None:
                    yield item
                self.last_observed_id = max(self.last_observed_id, message.message_id)

            if newest <= position:
                self.logger.debug("scan made no progress: after_id=%s", position)
                return
            position = newest

            if len(messages) < self.page_size:
                return

            self.cancel_token.wait(self.page_delay_sec)

    def _fetch_page(self, after_id: int) -> list[SourceMessage]:
        try:
            return list(self.source.fetch_messages(after_id=after_id, limit=self.page_size))
        except (RunCancelled, SourceUnavailable):
            raise
        except Exception as exc:
            raise SourceUnavailable(
                f"fetch messages failed: source={getattr(self.source, 'name', '?')} after_id={after_id} error={exc}"
            ) from exc

    def _to_video_item(self, message: SourceMessage) -> Optional[VideoItem]:
        attachment = message.attachment
        if attachment.kind is not AttachmentKind.VIDEO:
            self.logger.debug("skip message: id=%s kind=%s", message.message_id, attachment.kind.value)
            return None

        document_id = attachment.document_id or str(message.message_id)
        return VideoItem(
            id=document_id,
            file_name=attachment.file_name or f"video_{document_id}.mp4",
            file_size=attachment.file_size,
            duration=attachment.duration,
            timestamp=message.date,
            source_message_id=message.message_id,
        )
