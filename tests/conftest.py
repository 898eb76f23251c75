import itertools
import threading
import time

import pytest

from cloudbill.config import PaymentSettings, Readiness, WebhookSettings
from cloudbill.delivery.engine import WebhookDeliveryEngine
from cloudbill.delivery.logger import DeliveryLogger
from cloudbill.exceptions import DependencyUnavailableError
from cloudbill.ledger.db import Database
from cloudbill.provider.client import ProviderPaymentIntent, ProviderRefundResult
from cloudbill.provider.verifier import StripeEventVerifier
from cloudbill.reconciliation.machine import PaymentReconciler
from cloudbill.receiver.endpoint import WebhookEndpointServer
from cloudbill.services.payments import PaymentService
from cloudbill.services.refunds import RefundService
from cloudbill.utils.factories import PaymentFactory, ProviderEventFactory, RefundFactory


PROVIDER_WEBHOOK_SECRET = "whsec_test_secret"
OUTBOUND_SIGNING_SECRET = "test-secret-key-for-hmac"
TENANT = "tenant_1"


class FakePaymentProvider:
    """In-memory stand-in for the payment provider SDK wrapper."""

    def __init__(self, readiness: Readiness = Readiness.READY):
        self._readiness = readiness
        self.refund_status = "succeeded"
        self.intent_status = "requires_payment_method"
        self.refund_delay = 0.0
        self.error: Exception | None = None
        self.refund_calls: list[dict] = []
        self.intent_calls: list[dict] = []
        self.cancelled: list[str] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def readiness(self) -> Readiness:
        return self._readiness

    def require_ready(self) -> None:
        if self._readiness is not Readiness.READY:
            raise DependencyUnavailableError("payment provider", self._readiness.value)

    def _next_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}_fake_{next(self._ids)}"

    def create_payment_intent(self, **kwargs) -> ProviderPaymentIntent:
        if self.error is not None:
            raise self.error
        self.intent_calls.append(kwargs)
        intent_id = self._next_id("pi")
        return ProviderPaymentIntent(
            id=intent_id,
            status=self.intent_status,
            amount_minor=kwargs["amount_minor"],
            currency=kwargs["currency"],
            client_secret=f"{intent_id}_secret",
        )

    def cancel_payment_intent(self, payment_intent_id: str) -> ProviderPaymentIntent:
        if self.error is not None:
            raise self.error
        self.cancelled.append(payment_intent_id)
        return ProviderPaymentIntent(id=payment_intent_id, status="canceled", amount_minor=0, currency="usd")

    def create_refund(self, **kwargs) -> ProviderRefundResult:
        if self.refund_delay:
            time.sleep(self.refund_delay)
        if self.error is not None:
            raise self.error
        with self._lock:
            self.refund_calls.append(kwargs)
        return ProviderRefundResult(
            id=self._next_id("re"), status=self.refund_status, amount_minor=kwargs["amount_minor"]
        )


@pytest.fixture
def webhook_settings():
    return WebhookSettings(timeout_ms=2000, max_retries=3, retry_delay_ms=2000, backoff_multiplier=2)


@pytest.fixture
def payment_settings():
    return PaymentSettings(secret_key="sk_test_123", webhook_secret=PROVIDER_WEBHOOK_SECRET)


@pytest.fixture
def sleeps():
    """Backoff sleeps requested by the engine, in seconds, without waiting."""
    return []


@pytest.fixture
def delivery_logger():
    return DeliveryLogger()


@pytest.fixture
def engine(webhook_settings, delivery_logger, sleeps):
    eng = WebhookDeliveryEngine(webhook_settings, logger=delivery_logger, sleep=sleeps.append)
    yield eng
    eng.close()


@pytest.fixture
def endpoint_server():
    server = WebhookEndpointServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def file_db(tmp_path):
    """File-backed database for tests that use several connections at once."""
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def fake_provider():
    return FakePaymentProvider()


@pytest.fixture
def refund_service(db, fake_provider):
    return RefundService(db, fake_provider)


@pytest.fixture
def payment_service(db, fake_provider, payment_settings):
    return PaymentService(db, fake_provider, payment_settings)


@pytest.fixture
def reconciler(db):
    return PaymentReconciler(db)


@pytest.fixture
def verifier():
    return StripeEventVerifier(PROVIDER_WEBHOOK_SECRET)


@pytest.fixture
def payment_factory():
    return PaymentFactory


@pytest.fixture
def refund_factory():
    return RefundFactory


@pytest.fixture
def event_factory():
    return ProviderEventFactory


@pytest.fixture
def tenant():
    return TENANT


@pytest.fixture
def provider_secret():
    return PROVIDER_WEBHOOK_SECRET


@pytest.fixture
def signing_secret():
    return OUTBOUND_SIGNING_SECRET
