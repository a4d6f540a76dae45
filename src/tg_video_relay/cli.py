from __future__ import annotations

import argparse
import logging
import re
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import requests

from .cancellation import CancelToken
from .config import FAILURE_POLICY_CHOICES, Settings
from .errors import CursorPersistError, SourceUnavailable
from .models import RunStatistics
from .notifier import WebhookNotifier
from .pipeline import VideoRelayPipeline
from .scanner import MessageScanner
from .sources.base import MessageSource
from .sources.telegram import TelegramChannelSource
from .storage import S3ObjectStorage
from .store import FileCursorStore
from .transfer import ArtifactTransfer


def build_pipeline(
    settings: Settings,
    source: MessageSource,
    session: Optional[requests.Session] = None,
    storage: Optional[S3ObjectStorage] = None,
    cancel_token: Optional[CancelToken] = None,
    logger: Optional[logging.Logger] = None,
) -> VideoRelayPipeline:
    cancel_token = cancel_token or CancelToken()
    logger = logger or logging.getLogger("tg_video_relay")

    if storage is None:
        storage = S3ObjectStorage(
            settings.s3_bucket_name or "",
            endpoint_url=settings.s3_endpoint,
            region_name=settings.s3_region,
            access_key_id=settings.s3_access_key,
            secret_access_key=settings.s3_secret_key,
            public_url_base=settings.s3_public_url_base,
        )

    scanner = MessageScanner(
        source,
        page_size=settings.scan_page_size,
        page_delay_sec=settings.scan_page_delay_sec,
        cancel_token=cancel_token,
        logger=logger.getChild("scanner"),
    )
    transfer = ArtifactTransfer(
        source,
        storage,
        channel=settings.telegram_channel,
        staging_dir=settings.download_path,
        cancel_token=cancel_token,
        logger=logger.getChild("transfer"),
    )
    notifier = WebhookNotifier(
        webhook_url=settings.webhook_url or "",
        timeout_sec=settings.webhook_timeout_sec,
        max_attempts=settings.webhook_max_attempts,
        base_delay_sec=settings.webhook_base_delay_sec,
        retry_client_errors=settings.webhook_retry_client_errors,
        session=session,
        cancel_token=cancel_token,
        logger=logger.getChild("notifier"),
    )
    return VideoRelayPipeline(
        scanner=scanner,
        transfer=transfer,
        notifier=notifier,
        cursor_store=FileCursorStore(settings.cursor_path),
        channel_label=settings.channel_label,
        failure_policy=settings.failure_policy,
        cancel_token=cancel_token,
        logger=logger,
    )


def _parse_daily_at(value: str) -> tuple[int, int]:
    text = value.strip()
    match = re.fullmatch(r"([01]?\d|2[0-3]):([0-5]\d)", text)
    if not match:
        raise argparse.ArgumentTypeError("daily time must be HH:MM (24-hour), e.g. 10:00")
    return int(match.group(1)), int(match.group(2))


def _next_daily_run(now: datetime, hour: int, minute: int) -> datetime:
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def _run_guarded(pipeline: VideoRelayPipeline, logger: logging.Logger) -> Optional[RunStatistics]:
    try:
        return pipeline.run_once()
    except CursorPersistError:
        logger.error("cursor could not be persisted; the next run may replay processed videos")
        return None


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay new channel videos to object storage and a webhook")
    parser.add_argument("--config-file", default="config.ini", help="Path to config.ini file")
    parser.add_argument("--env-file", default=".env", help="Path to .env file")
    parser.add_argument("--loop", action="store_true", help="Run forever with interval")
    parser.add_argument("--interval-sec", type=int, default=None, help="Loop interval in seconds")
    parser.add_argument(
        "--daily-at",
        type=_parse_daily_at,
        default=None,
        metavar="HH:MM",
        help="Run once every day at local time HH:MM, e.g. 10:00",
    )
    parser.add_argument("--page-size", type=int, default=None, help="Override scan page size")
    parser.add_argument(
        "--failure-policy",
        choices=FAILURE_POLICY_CHOICES,
        default=None,
        help="skip: advance past failed messages; hold: retry them next run",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default from LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)

    settings = Settings.from_files(
        config_file=Path(args.config_file),
        env_file=Path(args.env_file),
    )
    if args.log_level:
        settings.log_level = args.log_level.upper()
    if args.page_size is not None:
        settings.scan_page_size = args.page_size
    if args.failure_policy is not None:
        settings.failure_policy = args.failure_policy
    if args.interval_sec is not None:
        settings.run_interval_sec = args.interval_sec

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("tg_video_relay")

    missing = settings.missing_required()
    if missing:
        raise SystemExit(f"Missing required configuration: {', '.join(missing)}")

    settings.ensure_dirs()

    source = TelegramChannelSource.from_credentials(
        session_file=settings.telegram_session_file,
        api_id=settings.telegram_api_id,
        api_hash=settings.telegram_api_hash,
        channel=settings.telegram_channel,
        phone_number=settings.telegram_phone_number,
        password=settings.telegram_password,
        logger=logger.getChild("telegram"),
    )
    try:
        source.connect()
    except SourceUnavailable as exc:
        raise SystemExit(f"Telegram login failed: {exc}") from exc

    session = requests.Session()
    pipeline = build_pipeline(settings, source, session=session, logger=logger)

    try:
        if args.daily_at is not None:
            daily_hour, daily_minute = args.daily_at
            if args.loop:
                logger.warning("--loop is ignored because --daily-at is set")

            while True:
                now = datetime.now().astimezone()
                next_run = _next_daily_run(now, daily_hour, daily_minute)
                wait_seconds = max((next_run - now).total_seconds(), 0.0)
                logger.info(
                    "daily schedule enabled: next run at %s (in %.0f seconds)",
                    next_run.strftime("%Y-%m-%d %H:%M:%S %Z"),
                    wait_seconds,
                )
                time.sleep(wait_seconds)
                _run_guarded(pipeline, logger)

        while True:
            stats = _run_guarded(pipeline, logger)

            if not args.loop:
                if stats is None or stats.outcome == "failed":
                    raise SystemExit(1)
                break

            time.sleep(settings.run_interval_sec)
    finally:
        source.close()
        session.close()


if __name__ == "__main__":
    main()
