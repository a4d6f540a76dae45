from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from typing import Optional

from .cancellation import CancelToken
from .errors import CursorPersistError, DeliveryError, RunCancelled, SourceUnavailable, TransferError
from .models import Cursor, NotificationPayload, RunStatistics, VideoItem
from .notifier import WebhookNotifier
from .scanner import MessageScanner
from .store import CursorStore
from .transfer import ArtifactTransfer

FAILURE_POLICY_SKIP = "skip"
FAILURE_POLICY_HOLD = "hold"
FAILURE_POLICIES = (FAILURE_POLICY_SKIP, FAILURE_POLICY_HOLD)


class VideoRelayPipeline:
    """One run: load cursor, scan, transfer and notify each video, persist cursor.

    Items are handled strictly one after another. The cursor only moves past a
    message once every item of that message was handled; with the ``hold``
    policy it also stops in front of the first message that had a failure.
    """

    def __init__(
        self,
        scanner: MessageScanner,
        transfer: ArtifactTransfer,
        notifier: WebhookNotifier,
        cursor_store: CursorStore,
        channel_label: str,
        failure_policy: str = FAILURE_POLICY_SKIP,
        cancel_token: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_policy not in FAILURE_POLICIES:
            options = ", ".join(FAILURE_POLICIES)
            raise ValueError(f"Unsupported failure policy '{failure_policy}'. Available: {options}")
        self.scanner = scanner
        self.transfer = transfer
        self.notifier = notifier
        self.cursor_store = cursor_store
        self.channel_label = channel_label
        self.failure_policy = failure_policy
        self.cancel_token = cancel_token or CancelToken()
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

    def run_once(self) -> RunStatistics:
        started = self.clock()
        stats = RunStatistics()
        loaded: Optional[Cursor] = None
        committed: Optional[Cursor] = None
        persist_error: Optional[CursorPersistError] = None

        # Message currently being handled and whether any of its items failed.
        pending_message: Optional[int] = None
        pending_failed = False
        in_flight = False
        held = False

        def commit(message_id: int, failed: bool) -> None:
            nonlocal committed, held
            if failed and self.failure_policy == FAILURE_POLICY_HOLD:
                if not held:
                    self.logger.warning("cursor held before failed message: message_id=%s", message_id)
                held = True
            if not held:
                committed = committed.advanced_to(message_id)

        self.logger.info("run started: channel=%s policy=%s", self.channel_label, self.failure_policy)
        try:
            loaded = self.cursor_store.load()
            committed = loaded
            stats = replace(stats, cursor_start=loaded.last_message_id)
            self.logger.info("resuming after message_id=%s", loaded.last_message_id)

            for item in self.scanner.scan(loaded):
                if pending_message is not None and item.source_message_id != pending_message:
                    commit(pending_message, pending_failed)
                    pending_failed = False
                pending_message = item.source_message_id

                stats = replace(stats, items_found=stats.items_found + 1)
                in_flight = True
                stats, ok = self._process_item(item, stats)
                in_flight = False
                if not ok:
                    pending_failed = True

            if pending_message is not None:
                commit(pending_message, pending_failed)
            if not held:
                committed = committed.advanced_to(self.scanner.last_observed_id)

        except RunCancelled:
            stats = replace(stats, outcome="cancelled")
            # Cancelled between pages: the last message was fully handled.
            if pending_message is not None and not in_flight:
                commit(pending_message, pending_failed)
                pending_message = None
            self.logger.warning(
                "run cancelled: unfinished message_id=%s will be rescanned next run",
                pending_message,
            )
        except KeyboardInterrupt:
            stats = replace(stats, outcome="cancelled")
            self.logger.warning("run interrupted: unfinished message_id=%s", pending_message)
            raise
        except (SourceUnavailable, CursorPersistError) as exc:
            stats = replace(stats, outcome="failed", fatal_error=str(exc))
            if pending_message is not None and not in_flight:
                commit(pending_message, pending_failed)
            self.logger.error("run aborted: %s", exc)
        except Exception as exc:
            stats = replace(stats, outcome="failed", fatal_error=str(exc))
            self.logger.exception("run aborted: unexpected error during scan")
        finally:
            if committed is not None:
                try:
                    self.cursor_store.save(committed)
                    stats = replace(stats, cursor_end=committed.last_message_id)
                except CursorPersistError as exc:
                    persist_error = exc
                    stats = replace(stats, outcome="failed", fatal_error=str(exc))
                    self.logger.error(
                        "run aborted: cursor not saved, progress up to message_id=%s may be replayed: %s",
                        committed.last_message_id,
                        exc,
                    )
            stats = replace(stats, duration_sec=round(self.clock() - started, 3))
            self._log_summary(stats)

        if persist_error is not None:
            raise persist_error
        return stats

    def _process_item(self, item: VideoItem, stats: RunStatistics) -> tuple[RunStatistics, bool]:
        self.logger.info(
            "processing video: id=%s file=%s message_id=%s",
            item.id,
            item.file_name,
            item.source_message_id,
        )
        try:
            result = self.transfer.transfer(item)
        except TransferError as exc:
            self.logger.error(
                "transfer failed: id=%s file=%s message_id=%s error=%s",
                item.id,
                item.file_name,
                item.source_message_id,
                exc,
            )
            return replace(stats, items_failed=stats.items_failed + 1), False
        stats = replace(stats, items_transferred=stats.items_transferred + 1)

        payload = NotificationPayload.from_transfer(item, result, self.channel_label)
        try:
            self.notifier.notify(payload)
        except DeliveryError as exc:
            self.logger.error(
                "notify failed: id=%s file=%s message_id=%s key=%s error=%s",
                item.id,
                item.file_name,
                item.source_message_id,
                result.storage_key,
                exc,
            )
            return replace(stats, items_failed=stats.items_failed + 1), False

        return replace(stats, items_notified=stats.items_notified + 1), True

    def _log_summary(self, stats: RunStatistics) -> None:
        self.logger.info(
            "run complete: outcome=%s found=%s transferred=%s notified=%s failed=%s duration=%.1fs cursor=%s->%s",
            stats.outcome,
            stats.items_found,
            stats.items_transferred,
            stats.items_notified,
            stats.items_failed,
            stats.duration_sec,
            stats.cursor_start,
            stats.cursor_end,
        )
