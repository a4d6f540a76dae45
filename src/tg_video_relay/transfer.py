from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .cancellation import CancelToken
from .errors import RunCancelled, TransferError
from .models import TransferResult, VideoItem, to_iso8601, to_millis, utc_now_iso
from .sources.base import MessageSource
from .storage import S3ObjectStorage

KEY_PREFIX = "videos"
DEFAULT_CONTENT_TYPE = "video/mp4"
CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".m4v": "video/x-m4v",
    ".3gp": "video/3gpp",
    ".flv": "video/x-flv",
}

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9.\-]")
_REPEATED_UNDERSCORE_RE = re.compile(r"__+")


def sanitize_file_name(file_name: str) -> str:
    cleaned = _UNSAFE_CHARS_RE.sub("_", file_name)
    cleaned = _REPEATED_UNDERSCORE_RE.sub("_", cleaned)
    return cleaned.strip("_")


def build_storage_key(channel: str, file_name: str, timestamp: datetime) -> str:
    return f"{KEY_PREFIX}/{channel}/{to_millis(timestamp)}_{sanitize_file_name(file_name)}"


def content_type_for(file_name: str) -> str:
    return CONTENT_TYPES.get(Path(file_name).suffix.lower(), DEFAULT_CONTENT_TYPE)


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


class ArtifactTransfer:
    def __init__(
        self,
        source: MessageSource,
        storage: S3ObjectStorage,
        channel: str,
        staging_dir: Path,
        cancel_token: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.source = source
        self.storage = storage
        self.channel = channel
        self.staging_dir = Path(staging_dir)
        self.cancel_token = cancel_token or CancelToken()
        self.logger = logger or logging.getLogger(__name__)

    def transfer(self, item: VideoItem) -> TransferResult:
        key = build_storage_key(self.channel, item.file_name, item.timestamp)

        with self._staged_file(item) as staged_path:
            self.cancel_token.raise_if_cancelled()
            self.logger.info(
                "downloading video: id=%s file=%s size=%s",
                item.id,
                item.file_name,
                format_file_size(item.file_size),
            )
            downloaded = None
            try:
                downloaded = Path(self.source.download_video(item, staged_path))
                # Some sources pick their own file name next to the requested path.
                if downloaded != staged_path:
                    os.replace(downloaded, staged_path)
            except RunCancelled:
                raise
            except Exception as exc:
                if downloaded is not None and downloaded != staged_path:
                    self._discard(downloaded)
                raise TransferError(f"download failed: video={item.id} error={exc}", item=item) from exc

            self.cancel_token.raise_if_cancelled()
            try:
                self.storage.upload_file(
                    key,
                    staged_path,
                    content_type=content_type_for(item.file_name),
                    metadata={
                        "original-file-name": quote(item.file_name, safe=""),
                        "channel-name": self.channel,
                        "upload-timestamp": utc_now_iso(),
                        "source-timestamp": to_iso8601(item.timestamp),
                    },
                )
            except Exception as exc:
                raise TransferError(f"upload failed: key={key} error={exc}", item=item) from exc

        result = TransferResult(
            storage_key=key,
            public_url=self.storage.public_url(key),
            container=self.storage.bucket,
        )
        self.logger.info("video stored: key=%s url=%s", result.storage_key, result.public_url)
        return result

    @contextmanager
    def _staged_file(self, item: VideoItem) -> Iterator[Path]:
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(
                dir=self.staging_dir,
                prefix=f"{item.id}_",
                suffix=Path(item.file_name).suffix or ".mp4",
            )
            os.close(fd)
        except OSError as exc:
            raise TransferError(f"staging failed: dir={self.staging_dir} error={exc}", item=item) from exc

        path = Path(name)
        try:
            yield path
        finally:
            self._discard(path)

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            self.logger.warning("staged file left behind: path=%s", path, exc_info=True)
