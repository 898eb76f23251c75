"""Payment provider wrapper.

The provider SDK is treated as a black box; ``PaymentProvider`` is the
shape the services depend on, and ``StripeProvider`` is the production
implementation backed by the ``stripe`` package.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from cloudbill.config import PaymentSettings, Readiness
from cloudbill.exceptions import DependencyUnavailableError, ProviderError
from cloudbill.models.payment import RefundReason

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderPaymentIntent:
    id: str
    status: str
    amount_minor: int
    currency: str
    client_secret: str | None = None


@dataclass(frozen=True)
class ProviderRefundResult:
    id: str
    status: str
    amount_minor: int | None = None


class PaymentProvider(Protocol):
    @property
    def readiness(self) -> Readiness: ...

    def require_ready(self) -> None: ...

    def create_payment_intent(
        self,
        *,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        payment_method_id: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> ProviderPaymentIntent: ...

    def cancel_payment_intent(self, payment_intent_id: str) -> ProviderPaymentIntent: ...

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount_minor: int,
        reason: RefundReason | None,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> ProviderRefundResult: ...


class StripeProvider:
    """Stripe-backed provider with an explicit readiness state."""

    def __init__(self, settings: PaymentSettings):
        self.settings = settings
        self._readiness = Readiness.NOT_CONFIGURED

    @property
    def readiness(self) -> Readiness:
        return self._readiness

    def initialize(self) -> Readiness:
        if self._readiness is Readiness.READY:
            _log.warning("Stripe client already initialized")
            return self._readiness
        if not self.settings.secret_key:
            _log.warning(
                "STRIPE_SECRET_KEY not configured - payment processing will not be available"
            )
            self._readiness = Readiness.NOT_CONFIGURED
            return self._readiness

        self._readiness = Readiness.INITIALIZING
        _log.info("Initializing Stripe client", extra={"api_version": self.settings.api_version})
        stripe.max_network_retries = self.settings.max_network_retries
        self._readiness = Readiness.READY
        return self._readiness

    def require_ready(self) -> None:
        if self._readiness is Readiness.NOT_CONFIGURED:
            raise DependencyUnavailableError("payment provider", "STRIPE_SECRET_KEY is not configured")
        if self._readiness is not Readiness.READY:
            raise DependencyUnavailableError("payment provider", "client is still initializing")

    def _request_options(self, idempotency_key: str | None = None) -> dict[str, Any]:
        options: dict[str, Any] = {
            "api_key": self.settings.secret_key,
            "stripe_version": self.settings.api_version,
        }
        if idempotency_key:
            options["idempotency_key"] = idempotency_key
        return options

    def create_payment_intent(
        self,
        *,
        amount_minor: int,
        currency: str,
        metadata: dict[str, str],
        payment_method_id: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> ProviderPaymentIntent:
        self.require_ready()
        params: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency,
            "metadata": metadata,
        }
        if payment_method_id:
            params["payment_method"] = payment_method_id
            params["confirm"] = False
        if description:
            params["description"] = description
        try:
            intent = stripe.PaymentIntent.create(**params, **self._request_options(idempotency_key))
        except stripe.StripeError as e:
            raise ProviderError("Failed to create payment intent", code=e.code) from e
        return _to_intent(intent)

    def cancel_payment_intent(self, payment_intent_id: str) -> ProviderPaymentIntent:
        self.require_ready()
        try:
            intent = stripe.PaymentIntent.cancel(payment_intent_id, **self._request_options())
        except stripe.StripeError as e:
            raise ProviderError(
                "Failed to cancel payment intent", code=e.code, payment_intent_id=payment_intent_id
            ) from e
        return _to_intent(intent)

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount_minor: int,
        reason: RefundReason | None,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> ProviderRefundResult:
        self.require_ready()
        params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": amount_minor,
            "metadata": metadata,
        }
        # OTHER is a local reason only; the provider rejects unknown values
        if reason is not None and reason is not RefundReason.OTHER:
            params["reason"] = reason.value
        try:
            refund = stripe.Refund.create(**params, **self._request_options(idempotency_key))
        except stripe.StripeError as e:
            raise ProviderError(
                "Failed to create refund", code=e.code, payment_intent_id=payment_intent_id
            ) from e
        return ProviderRefundResult(
            id=refund.id,
            status=getattr(refund, "status", None) or "pending",
            amount_minor=getattr(refund, "amount", None),
        )


def _to_intent(intent) -> ProviderPaymentIntent:
    return ProviderPaymentIntent(
        id=intent.id,
        status=intent.status,
        amount_minor=intent.amount,
        currency=intent.currency,
        client_secret=getattr(intent, "client_secret", None),
    )
