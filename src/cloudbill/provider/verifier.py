import json
import logging
from typing import Any, Protocol

import stripe

from cloudbill.config import PaymentSettings
from cloudbill.exceptions import DependencyUnavailableError, SignatureVerificationError

_log = logging.getLogger(__name__)


class EventVerifier(Protocol):
    def verify(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Return the decoded event if ``signature`` matches the exact ``payload`` bytes."""
        ...


class StripeEventVerifier:
    """Checks the ``Stripe-Signature`` header with the provider SDK."""

    header_name = "Stripe-Signature"

    def __init__(self, webhook_secret: str | None, tolerance_seconds: int = 300):
        self._secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

    @classmethod
    def from_settings(cls, settings: PaymentSettings) -> "StripeEventVerifier":
        return cls(settings.webhook_secret, settings.webhook_tolerance_seconds)

    def verify(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        if not self._secret:
            raise DependencyUnavailableError("webhook verification", "webhook secret is not configured")
        if not signature:
            raise SignatureVerificationError("Missing signature header")
        try:
            stripe.Webhook.construct_event(
                payload, signature, self._secret, tolerance=self.tolerance_seconds
            )
        except (ValueError, stripe.SignatureVerificationError) as e:
            _log.warning("Webhook signature verification failed", extra={"error_type": type(e).__name__})
            raise SignatureVerificationError("Webhook signature verification failed") from e
        # Decode from the verified bytes, never from a re-serialized copy
        return json.loads(payload)
