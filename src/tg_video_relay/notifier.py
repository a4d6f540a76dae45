from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import requests

from . import __version__
from .cancellation import CancelToken
from .errors import BatchDeliveryError, DeliveryError, RunCancelled
from .models import BatchDeliveryReport, DeliveryResult, NotificationPayload

USER_AGENT = f"tg-video-relay/{__version__}"
# Client errors that still make sense to retry when client errors are not retried in general.
RETRIABLE_CLIENT_STATUSES = {408, 429}


class WebhookNotifier:
    name = "webhook"

    def __init__(
        self,
        webhook_url: str,
        timeout_sec: float = 30,
        max_attempts: int = 3,
        base_delay_sec: float = 2.0,
        retry_client_errors: bool = True,
        session: Optional[requests.Session] = None,
        cancel_token: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
        max_workers: int = 4,
        session_factory: Optional[Callable[[], requests.Session]] = None,
    ):
        if not webhook_url:
            raise ValueError("WEBHOOK_URL is required for webhook notifier")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.webhook_url = webhook_url
        self.timeout_sec = timeout_sec
        self.max_attempts = max_attempts
        self.base_delay_sec = base_delay_sec
        self.retry_client_errors = retry_client_errors
        self.session = session or requests.Session()
        self.cancel_token = cancel_token or CancelToken()
        self.logger = logger or logging.getLogger(__name__)
        self.max_workers = max_workers
        self.session_factory = session_factory or requests.Session

    def notify(self, payload: NotificationPayload) -> DeliveryResult:
        return self._deliver(payload, self.session)

    def _deliver(self, payload: NotificationPayload, session: requests.Session) -> DeliveryResult:
        self.logger.info("sending webhook: video_url=%s", payload.video_url)
        result = None
        for attempt in range(1, self.max_attempts + 1):
            self.cancel_token.raise_if_cancelled()
            result = self._post_payload(session, payload, attempt)
            if result.success:
                self.logger.info(
                    "webhook delivered: video_url=%s status=%s attempt=%s",
                    payload.video_url,
                    result.status_code,
                    attempt,
                )
                return result

            if attempt == self.max_attempts or not self._should_retry(result):
                break

            delay = self.base_delay_sec * (2 ** (attempt - 1))
            self.logger.warning(
                "webhook attempt failed (%s/%s), retrying in %.1fs: %s",
                attempt,
                self.max_attempts,
                delay,
                result.error_message,
            )
            self.cancel_token.wait(delay)

        raise DeliveryError(
            f"webhook failed after {result.attempts} attempt(s): {result.error_message}",
            result=result,
            attempts=result.attempts,
        )

    def notify_batch(self, payloads: Sequence[NotificationPayload]) -> BatchDeliveryReport:
        self.logger.info("sending %s webhooks", len(payloads))
        if not payloads:
            return BatchDeliveryReport()

        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(payloads)))) as pool:
            futures = [pool.submit(self._notify_in_worker, payload) for payload in payloads]
            results = [self._collect(future, payload) for future, payload in zip(futures, payloads)]

        succeeded = sum(1 for result in results if result.success)
        failed = len(results) - succeeded
        report = BatchDeliveryReport(succeeded=succeeded, failed=failed, results=results)
        self.logger.info("webhooks completed: %s successful, %s failed", succeeded, failed)

        if failed:
            errors = [result.error_message for result in results if not result.success]
            self.logger.error("webhook failures: %s", errors)
            raise BatchDeliveryError(f"{failed} out of {len(payloads)} webhooks failed", report=report)
        return report

    def _notify_in_worker(self, payload: NotificationPayload) -> DeliveryResult:
        # requests.Session is not thread-safe, so every batch worker gets its own.
        session = self.session_factory()
        try:
            return self._deliver(payload, session)
        finally:
            session.close()

    def _collect(self, future, payload: NotificationPayload) -> DeliveryResult:
        try:
            return future.result()
        except RunCancelled:
            raise
        except DeliveryError as exc:
            if exc.result is not None:
                return exc.result
            return DeliveryResult(channel=self.name, success=False, error_message=str(exc))
        except Exception as exc:
            self.logger.exception("webhook crashed: video_url=%s", payload.video_url)
            return DeliveryResult(channel=self.name, success=False, error_message=str(exc))

    def _should_retry(self, result: DeliveryResult) -> bool:
        status = result.status_code
        if self.retry_client_errors or status is None:
            return True
        if 400 <= status < 500:
            return status in RETRIABLE_CLIENT_STATUSES
        return True

    def _post_payload(
        self, session: requests.Session, payload: NotificationPayload, attempt: int
    ) -> DeliveryResult:
        try:
            response = session.post(
                self.webhook_url,
                json=payload.to_json(),
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=self.timeout_sec,
            )
        except Exception as exc:
            return DeliveryResult(
                channel=self.name,
                success=False,
                error_message=f"HTTP request failed: {exc}",
                attempts=attempt,
            )

        excerpt = (response.text or "")[:400]
        if not 200 <= response.status_code < 300:
            return DeliveryResult(
                channel=self.name,
                success=False,
                error_message=f"Webhook returned status {response.status_code}",
                response_excerpt=excerpt,
                status_code=response.status_code,
                attempts=attempt,
            )

        return DeliveryResult(
            channel=self.name,
            success=True,
            response_excerpt=excerpt,
            status_code=response.status_code,
            attempts=attempt,
        )
