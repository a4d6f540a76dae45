from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Optional

from .errors import RunCancelled


class CancelToken:
    """Cooperative cancellation shared by every component of one pipeline.

    ``wait`` is the only blocking primitive the pipeline uses between network
    calls. Tests inject ``sleep`` to record delays instead of blocking.
    """

    def __init__(self, sleep: Optional[Callable[[float], None]] = None):
        self._event = threading.Event()
        self._sleep = sleep

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled("run cancelled")

    def wait(self, seconds: float) -> None:
        self.raise_if_cancelled()
        if seconds > 0:
            if self._sleep is not None:
                self._sleep(seconds)
            else:
                self._event.wait(seconds)
        self.raise_if_cancelled()
