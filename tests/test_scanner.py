import math
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tg_video_relay.cancellation import CancelToken
from tg_video_relay.errors import RunCancelled, SourceUnavailable
from tg_video_relay.models import Attachment, AttachmentKind, Cursor, SourceMessage, VideoItem
from tg_video_relay.scanner import MessageScanner
from tg_video_relay.sources.base import MessageSource

T0 = datetime(2026, 2, 7, tzinfo=timezone.utc)


def _video(message_id: int, file_name=None) -> SourceMessage:
    return SourceMessage(
        message_id=message_id,
        date=T0,
        attachment=Attachment(
            kind=AttachmentKind.VIDEO,
            document_id=f"doc{message_id}",
            file_name=file_name,
            file_size=1024,
            duration=5,
            mime_type="video/mp4",
        ),
    )


def _photo(message_id: int) -> SourceMessage:
    return SourceMessage(
        message_id=message_id,
        date=T0,
        attachment=Attachment(kind=AttachmentKind.OTHER, mime_type="image/jpeg"),
    )


def _text(message_id: int) -> SourceMessage:
    return SourceMessage(message_id=message_id, date=T0)


class FakeSource(MessageSource):
    name = "fake"

    def __init__(self, messages: list[SourceMessage], fail_after_calls=None):
        self.messages = sorted(messages, key=lambda message: message.message_id)
        self.calls: list[tuple[int, int]] = []
        self.fail_after_calls = fail_after_calls

    def fetch_messages(self, after_id: int, limit: int) -> list[SourceMessage]:
        if self.fail_after_calls is not None and len(self.calls) >= self.fail_after_calls:
            raise ConnectionError("network down")
        self.calls.append((after_id, limit))
        return [message for message in self.messages if message.message_id > after_id][:limit]

    def download_video(self, item: VideoItem, destination: Path) -> Path:
        raise NotImplementedError


def _scanner(source: MessageSource, page_size: int = 100, delays=None, token=None) -> MessageScanner:
    if token is None:
        token = CancelToken(sleep=(delays.append if delays is not None else lambda _: None))
    return MessageScanner(source, page_size=page_size, page_delay_sec=1.5, cancel_token=token)


def test_scan_yields_only_videos_with_message_ids() -> None:
    source = FakeSource([_video(10, "a.mp4"), _photo(11), _text(12), _video(13)])

    items = list(_scanner(source).scan(Cursor(0)))

    assert [item.source_message_id for item in items] == [10, 13]
    assert items[0].file_name == "a.mp4"
    assert items[1].file_name == "video_doc13.mp4"
    assert items[0].id == "doc10"
    assert items[0].duration == 5


def test_scan_starts_after_cursor() -> None:
    source = FakeSource([_video(5), _video(6), _video(7)])

    items = list(_scanner(source).scan(Cursor(6)))

    assert [item.source_message_id for item in items] == [7]
    assert source.calls[0] == (6, 100)


@pytest.mark.parametrize("total,page_size", [(0, 3), (2, 3), (3, 3), (7, 3), (9, 3), (10, 100)])
def test_scan_page_requests_are_bounded(total: int, page_size: int) -> None:
    messages = [_video(i) if i % 2 else _photo(i) for i in range(1, total + 1)]
    source = FakeSource(messages)
    scanner = _scanner(source, page_size=page_size)

    items = list(scanner.scan(Cursor(0)))

    assert len(source.calls) <= math.ceil(total / page_size) + 1
    assert [item.source_message_id for item in items] == [i for i in range(1, total + 1) if i % 2]
    assert scanner.last_observed_id == total


def test_partial_page_ends_scan_without_extra_request() -> None:
    source = FakeSource([_video(1), _video(2)])
    delays: list[float] = []

    list(_scanner(source, page_size=3, delays=delays).scan(Cursor(0)))

    assert len(source.calls) == 1
    assert delays == []


def test_full_pages_are_throttled() -> None:
    source = FakeSource([_video(i) for i in range(1, 7)])
    delays: list[float] = []

    list(_scanner(source, page_size=3, delays=delays).scan(Cursor(0)))

    assert [after for after, _ in source.calls] == [0, 3, 6]
    assert delays == [1.5, 1.5]


def test_scan_stops_when_source_makes_no_progress() -> None:
    class StuckSource(FakeSource):
        def fetch_messages(self, after_id: int, limit: int) -> list[SourceMessage]:
            self.calls.append((after_id, limit))
            return [_video(1), _video(2)]

    source = StuckSource([])
    items = list(_scanner(source, page_size=2).scan(Cursor(2)))

    assert items == []
    assert len(source.calls) == 1


def test_source_errors_become_source_unavailable() -> None:
    source = FakeSource([_video(i) for i in range(1, 5)], fail_after_calls=1)
    scanner = _scanner(source, page_size=2)

    seen = []
    with pytest.raises(SourceUnavailable) as exc_info:
        for item in scanner.scan(Cursor(0)):
            seen.append(item.source_message_id)

    assert seen == [1, 2]
    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_scan_stops_at_cancellation_during_throttle() -> None:
    token = CancelToken(sleep=lambda _: token.cancel())
    source = FakeSource([_video(i) for i in range(1, 5)])
    scanner = _scanner(source, page_size=2, token=token)

    seen = []
    with pytest.raises(RunCancelled):
        for item in scanner.scan(Cursor(0)):
            seen.append(item.source_message_id)

    assert seen == [1, 2]
    assert len(source.calls) == 1
