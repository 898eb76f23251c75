import logging
import time
import uuid
from datetime import datetime, timezone

import requests
from requests.structures import CaseInsensitiveDict

from cloudbill.config import WebhookSettings
from cloudbill.delivery.logger import DeliveryLogger
from cloudbill.delivery.retry import RetryPolicy
from cloudbill.delivery.signer import SIGNATURE_HEADER, WebhookSigner
from cloudbill.models.delivery import DeliveryAttempt, DeliveryOutcome, DeliveryResult, WebhookTarget
from cloudbill.utils.validators import (
    encode_webhook_body,
    is_valid_url,
    sanitize_url,
    webhook_request_errors,
)

_log = logging.getLogger(__name__)


class WebhookDeliveryEngine:
    """Delivers JSON webhooks to third-party endpoints with bounded retries.

    Network and HTTP failures are never raised to the caller; every outcome is
    described by the returned ``DeliveryResult``.

    A caller-supplied ``session`` is used as is, including its own
    ``max_redirects``; only a session the engine creates gets the configured limit.
    """

    def __init__(
        self,
        settings: WebhookSettings,
        retry_policy: RetryPolicy | None = None,
        logger: DeliveryLogger | None = None,
        signer: WebhookSigner | None = None,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ):
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.logger = logger
        if signer is None and settings.signing_secret:
            signer = WebhookSigner(settings.signing_secret)
        self.signer = signer
        if session is None:
            session = requests.Session()
            session.max_redirects = settings.max_redirects
        self._session = session
        self._sleep = sleep

    is_valid_url = staticmethod(is_valid_url)
    sanitize_url = staticmethod(sanitize_url)

    def close(self) -> None:
        self._session.close()

    def _build_headers(self, target: WebhookTarget, body: bytes | None) -> CaseInsensitiveDict:
        headers = CaseInsensitiveDict(
            {
                "Content-Type": "application/json",
                "User-Agent": self.settings.user_agent,
            }
        )
        headers.update(target.headers or {})
        if self.signer is not None and body is not None:
            headers[SIGNATURE_HEADER] = self.signer.sign(body)
        return headers

    def send_once(self, target: WebhookTarget, attempt_number: int = 1) -> DeliveryResult:
        """Make a single delivery attempt."""
        if not self.settings.enabled:
            return DeliveryResult(
                success=False,
                outcome=DeliveryOutcome.DISABLED,
                error="Webhook delivery is disabled",
            )

        errors = webhook_request_errors(target.url, target.method, target.headers, target.body)
        if errors:
            if "url" in errors:
                error = "Invalid webhook URL"
            else:
                error = "; ".join(errors.values())
            _log.warning(
                "Webhook request rejected before sending",
                extra={"url": sanitize_url(target.url), "errors": errors},
            )
            return DeliveryResult(success=False, outcome=DeliveryOutcome.INVALID, error=error)

        method = (target.method or "POST").upper()
        body = None
        if target.body is not None:
            body = encode_webhook_body(target.body)
        headers = self._build_headers(target, body)
        safe_url = sanitize_url(target.url)

        start = time.monotonic()
        status_code = None
        payload = None
        error = None

        try:
            resp = self._session.request(
                method,
                target.url,
                data=body,
                headers=headers,
                timeout=self.settings.timeout_seconds,
                allow_redirects=self.settings.follow_redirects,
                verify=self.settings.verify_ssl,
            )
            status_code = resp.status_code
            payload = _read_payload(resp)
        except requests.exceptions.Timeout:
            error = "timeout"
        except requests.exceptions.TooManyRedirects:
            error = "too_many_redirects"
        except requests.exceptions.ConnectionError:
            error = "connection_error"
        except requests.exceptions.RequestException as e:
            error = str(e) or e.__class__.__name__

        elapsed_ms = (time.monotonic() - start) * 1000
        outcome = _classify(status_code)
        success = outcome is DeliveryOutcome.DELIVERED

        if error is not None:
            _log.error(
                "Failed to send webhook",
                extra={"url": safe_url, "method": method, "error": error, "attempt": attempt_number},
            )
        else:
            _log.info(
                "Webhook sent successfully" if success else "Webhook failed",
                extra={
                    "url": safe_url,
                    "method": method,
                    "status_code": status_code,
                    "duration_ms": round(elapsed_ms, 1),
                    "attempt": attempt_number,
                },
            )

        if self.logger is not None:
            self.logger.log(
                DeliveryAttempt(
                    attempt_id=f"att_{uuid.uuid4().hex[:16]}",
                    event_id=target.event_id,
                    url=safe_url,
                    method=method,
                    status_code=status_code,
                    outcome=outcome,
                    timestamp=datetime.now(timezone.utc),
                    response_time_ms=elapsed_ms,
                    attempt_number=attempt_number,
                    error=error,
                )
            )

        return DeliveryResult(
            success=success,
            outcome=outcome,
            status_code=status_code,
            response=payload,
            error=error,
            attempts=attempt_number,
        )

    def send_with_retry(
        self,
        target: WebhookTarget,
        max_retries: int | None = None,
        deadline: float | None = None,
    ) -> DeliveryResult:
        """Deliver with automatic retries on failure.

        Args:
            target: The request to deliver.
            max_retries: Retries after the first attempt; defaults to the configured value.
            deadline: Optional ``time.monotonic()`` value; no retry is started
                whose backoff would end past it.

        Returns:
            The last attempt's result, with ``attempts`` set to the total made.
        """
        retries = self.retry_policy.max_retries if max_retries is None else max_retries
        retry_count = 0

        while True:
            result = self.send_once(target, attempt_number=retry_count + 1)
            result.attempts = retry_count + 1

            if result.success:
                return result

            # Nothing was sent, so there is nothing to retry
            if result.outcome in (DeliveryOutcome.INVALID, DeliveryOutcome.DISABLED):
                return result

            if not self.retry_policy.should_retry(result.status_code):
                _log.warning(
                    "Webhook returned client error, not retrying",
                    extra={"url": sanitize_url(target.url), "status_code": result.status_code},
                )
                return result

            if not self.retry_policy.has_attempts_remaining(retry_count, retries):
                if result.error is None:
                    result.error = "Max retries exceeded"
                return result

            delay_ms = self.retry_policy.next_delay(retry_count)
            if deadline is not None and time.monotonic() + delay_ms / 1000 > deadline:
                _log.warning(
                    "Webhook retry deadline reached",
                    extra={"url": sanitize_url(target.url), "attempt": retry_count + 1},
                )
                return result

            _log.info(
                "Webhook failed, retrying...",
                extra={
                    "url": sanitize_url(target.url),
                    "attempt": retry_count + 1,
                    "max_retries": retries,
                    "delay_ms": delay_ms,
                },
            )
            if delay_ms > 0:
                self._sleep(delay_ms / 1000)

            retry_count += 1

    def send_test_webhook(self, url: str) -> bool:
        target = WebhookTarget(
            url=url,
            method="POST",
            body={
                "test": True,
                "message": "CloudBill Notification Service - Test Webhook",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
        return self.send_once(target).success


def _classify(status_code: int | None) -> DeliveryOutcome:
    if status_code is None:
        return DeliveryOutcome.NO_RESPONSE
    if 200 <= status_code < 300:
        return DeliveryOutcome.DELIVERED
    if status_code >= 500:
        return DeliveryOutcome.SERVER_ERROR
    return DeliveryOutcome.REJECTED


def _read_payload(resp: requests.Response):
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text
