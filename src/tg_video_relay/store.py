from __future__ import annotations

import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import CursorPersistError
from .models import Cursor


class CursorStore(ABC):
    @abstractmethod
    def load(self) -> Cursor:
        raise NotImplementedError

    @abstractmethod
    def save(self, cursor: Cursor) -> None:
        raise NotImplementedError


class FileCursorStore(CursorStore):
    """Keeps the last processed message id as UTF-8 text in a single file.

    Writes go to a sibling temp file which is fsynced and renamed over the
    target, so the file always holds either the previous or the new value.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Cursor:
        try:
            raw = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return Cursor()
        except OSError as exc:
            raise CursorPersistError(f"read cursor failed: path={self.path} error={exc}") from exc

        if not raw:
            return Cursor()
        try:
            value = int(raw)
        except ValueError as exc:
            raise CursorPersistError(f"cursor file is corrupt: path={self.path} content={raw[:40]!r}") from exc
        if value < 0:
            raise CursorPersistError(f"cursor file holds a negative id: path={self.path} value={value}")
        return Cursor(last_message_id=value)

    def save(self, cursor: Cursor) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(str(int(cursor.last_message_id)))
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise CursorPersistError(f"write cursor failed: path={self.path} error={exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass


class MemoryCursorStore(CursorStore):
    def __init__(self, initial: int = 0):
        self.cursor = Cursor(last_message_id=initial)
        self.saved: list[Cursor] = []

    def load(self) -> Cursor:
        return self.cursor

    def save(self, cursor: Cursor) -> None:
        self.cursor = cursor
        self.saved.append(cursor)
