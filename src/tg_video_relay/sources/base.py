from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from ..models import SourceMessage, VideoItem


class MessageSource(ABC):
    name: str

    @abstractmethod
    def fetch_messages(self, after_id: int, limit: int) -> list[SourceMessage]:
        """Return up to ``limit`` messages with id greater than ``after_id``, oldest first."""
        raise NotImplementedError

    @abstractmethod
    def download_video(self, item: VideoItem, destination: Path) -> Path:
        raise NotImplementedError
