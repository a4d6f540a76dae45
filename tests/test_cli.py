import argparse
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tg_video_relay.cli import _next_daily_run, _parse_args, _parse_daily_at, build_pipeline, main
from tg_video_relay.config import Settings
from tg_video_relay.sources.base import MessageSource
from tg_video_relay.store import FileCursorStore


def test_parse_args_uses_expected_defaults() -> None:
    args = _parse_args([])

    assert args.config_file == "config.ini"
    assert args.env_file == ".env"
    assert args.loop is False
    assert args.interval_sec is None
    assert args.daily_at is None
    assert args.page_size is None
    assert args.failure_policy is None
    assert args.log_level is None


def test_parse_args_overrides() -> None:
    args = _parse_args(["--loop", "--interval-sec", "60", "--failure-policy", "hold", "--daily-at", "10:00"])

    assert args.loop is True
    assert args.interval_sec == 60
    assert args.failure_policy == "hold"
    assert args.daily_at == (10, 0)


def test_parse_daily_at_invalid() -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_daily_at("24:00")
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_daily_at("10am")


def test_next_daily_run_rolls_over_to_next_day() -> None:
    now = datetime(2026, 2, 4, 10, 0, 0, tzinfo=timezone.utc)

    assert _next_daily_run(now, 10, 0) == datetime(2026, 2, 5, 10, 0, 0, tzinfo=timezone.utc)
    assert _next_daily_run(now, 11, 30) == datetime(2026, 2, 4, 11, 30, 0, tzinfo=timezone.utc)


class NullSource(MessageSource):
    name = "null"

    def fetch_messages(self, after_id, limit):
        return []

    def download_video(self, item, destination):
        raise NotImplementedError


class FakeStorage:
    bucket = "relay-videos"

    def upload_file(self, key, path, content_type, metadata=None) -> None:
        pass

    def public_url(self, key: str) -> str:
        return key


def test_build_pipeline_wires_settings(tmp_path: Path) -> None:
    settings = Settings.from_mapping(
        {
            "WEBHOOK_URL": "https://hooks.example.com",
            "DOWNLOAD_PATH": str(tmp_path),
            "SCAN_PAGE_SIZE": "25",
            "FAILURE_POLICY": "hold",
            "TELEGRAM_CHANNEL": "news",
        }
    )

    pipeline = build_pipeline(settings, NullSource(), storage=FakeStorage())

    assert pipeline.scanner.page_size == 25
    assert pipeline.failure_policy == "hold"
    assert pipeline.channel_label == "t.me/news"
    assert pipeline.transfer.channel == "news"
    assert isinstance(pipeline.cursor_store, FileCursorStore)
    assert pipeline.cursor_store.path == tmp_path / "last_offset.txt"
    assert pipeline.scanner.cancel_token is pipeline.notifier.cancel_token

    stats = pipeline.run_once()
    assert stats.items_found == 0
    assert (tmp_path / "last_offset.txt").read_text(encoding="utf-8") == "0"


def test_main_exits_when_configuration_is_missing(tmp_path: Path, monkeypatch) -> None:
    for key in ("TELEGRAM_API_ID", "WEBHOOK_URL", "S3_BUCKET_NAME"):
        monkeypatch.delenv(key, raising=False)

    with pytest.raises(SystemExit) as exc_info:
        main(["--config-file", str(tmp_path / "none.ini"), "--env-file", str(tmp_path / ".env")])

    assert "WEBHOOK_URL" in str(exc_info.value)
