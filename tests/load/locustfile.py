# Locust load test for the provider webhook receiver.
#
# How to run:
#   locust -f tests/load/locustfile.py --headless -u 50 -r 10 --run-time 30s --host http://127.0.0.1:8080
#
# The test starts a ProviderWebhookServer on port 8080 (backed by a temporary
# SQLite ledger seeded with payments) via on_test_start/on_test_stop events,
# so no external server is needed.
#
# Every request is a correctly signed payment_intent event for a seeded
# payment; at the end every acknowledged event must have been reconciled.

import logging
import random
import tempfile
import threading
from decimal import Decimal
from pathlib import Path

from locust import HttpUser, between, events, task
from sqlalchemy import func, select

from cloudbill.ledger.db import Database
from cloudbill.models.payment import PaymentStatus, ProcessedEvent
from cloudbill.models.webhook import ProviderEventType
from cloudbill.provider.verifier import StripeEventVerifier
from cloudbill.reconciliation.machine import PaymentReconciler
from cloudbill.receiver.server import ProviderWebhookServer
from cloudbill.utils.factories import PaymentFactory, ProviderEventFactory, signed_event

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared state: tracking sent vs acknowledged for loss assertions
# ---------------------------------------------------------------------------
WEBHOOK_SECRET = "whsec_load_test"
TENANT = "tenant_load"
SEEDED_PAYMENTS = 200

_stats_lock = threading.Lock()
_sent_count: int = 0
_success_count: int = 0
_failure_count: int = 0

# Managed by test lifecycle events
_server: ProviderWebhookServer | None = None
_db: Database | None = None
_tmpdir: tempfile.TemporaryDirectory | None = None
_intent_ids: list[str] = []

EVENT_TYPES = [
    ProviderEventType.PAYMENT_INTENT_PROCESSING,
    ProviderEventType.PAYMENT_INTENT_REQUIRES_ACTION,
    ProviderEventType.PAYMENT_INTENT_FAILED,
    ProviderEventType.PAYMENT_INTENT_SUCCEEDED,
]


def _increment(counter: str) -> None:
    global _sent_count, _success_count, _failure_count
    with _stats_lock:
        if counter == "sent":
            _sent_count += 1
        elif counter == "success":
            _success_count += 1
        else:
            _failure_count += 1


# ---------------------------------------------------------------------------
# Locust lifecycle events
# ---------------------------------------------------------------------------
@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Seed a ledger and start the receiver on port 8080."""
    global _server, _db, _tmpdir, _intent_ids, _sent_count, _success_count, _failure_count

    with _stats_lock:
        _sent_count = 0
        _success_count = 0
        _failure_count = 0

    _tmpdir = tempfile.TemporaryDirectory()
    _db = Database(f"sqlite:///{Path(_tmpdir.name) / 'load.db'}")
    _db.create_all()
    _intent_ids = [
        PaymentFactory.create(
            _db, tenant_id=TENANT, amount=Decimal("25.00"), status=PaymentStatus.PENDING
        ).provider_payment_intent_id
        for _ in range(SEEDED_PAYMENTS)
    ]

    _server = ProviderWebhookServer(
        verifier=StripeEventVerifier(WEBHOOK_SECRET),
        reconciler=PaymentReconciler(_db),
        host="127.0.0.1",
        port=8080,
    )
    _server.start()
    logger.info("ProviderWebhookServer started on port 8080")


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Drain the reconciliation queue, stop the receiver and report."""
    global _server, _db, _tmpdir

    reconciled = 0
    failed = 0
    if _server is not None:
        if not _server.wait_until_idle(timeout=60):
            logger.error("Reconciliation queue did not drain within 60s")
        failed = _server.failed_events
        _server.stop()
        _server = None
        logger.info("ProviderWebhookServer stopped")

    if _db is not None:
        with _db.transaction() as session:
            reconciled = session.scalar(select(func.count(ProcessedEvent.id)))
        _db.dispose()
        _db = None
    if _tmpdir is not None:
        _tmpdir.cleanup()
        _tmpdir = None

    with _stats_lock:
        total_sent = _sent_count
        total_ok = _success_count
        total_fail = _failure_count

    logger.info(
        "Load test summary: sent=%d, http_ok=%d, http_fail=%d, reconciled=%d, worker_failures=%d",
        total_sent,
        total_ok,
        total_fail,
        reconciled,
        failed,
    )

    if total_sent > 0:
        success_rate = total_ok / total_sent * 100
        logger.info("Success rate: %.2f%% (target: >99%%)", success_rate)
        if success_rate < 99.0:
            environment.process_exit_code = 1
            logger.error("ASSERTION FAILED: Success rate %.2f%% is below 99%% threshold", success_rate)
        if reconciled < total_ok:
            environment.process_exit_code = 1
            logger.error(
                "ASSERTION FAILED: %d acknowledged events never reconciled (%d acknowledged, %d reconciled)",
                total_ok - reconciled,
                total_ok,
                reconciled,
            )

    # Acknowledgement must stay fast no matter how slow reconciliation is
    for stat in environment.runner.stats.entries.values():
        p95 = stat.get_response_time_percentile(0.95)
        if p95 and p95 > 1000:
            environment.process_exit_code = 1
            logger.error("ASSERTION FAILED: p95 latency %dms exceeds 1000ms for '%s'", p95, stat.name)


# ---------------------------------------------------------------------------
# Locust user
# ---------------------------------------------------------------------------
class ProviderWebhookUser(HttpUser):
    """Plays the payment provider, posting signed events for seeded payments."""

    wait_time = between(0.01, 0.05)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._event_type_index = 0

    def _next_event_type(self) -> ProviderEventType:
        event_type = EVENT_TYPES[self._event_type_index % len(EVENT_TYPES)]
        self._event_type_index += 1
        return event_type

    @task
    def post_signed_event(self) -> None:
        event_type = self._next_event_type()
        event = ProviderEventFactory.payment_intent(
            event_type, payment_intent_id=random.choice(_intent_ids), tenant_id=TENANT
        )
        raw, signature = signed_event(event, WEBHOOK_SECRET)

        _increment("sent")

        with self.client.post(
            "/webhooks/stripe",
            data=raw,
            headers={"Content-Type": "application/json", "Stripe-Signature": signature},
            catch_response=True,
            name=f"/webhooks/stripe [{event_type.value}]",
        ) as response:
            if response.status_code == 200:
                _increment("success")
                response.success()
            else:
                _increment("failure")
                response.failure(f"HTTP {response.status_code}: {response.text[:200]}")
