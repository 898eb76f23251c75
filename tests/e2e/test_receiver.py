"""End-to-end tests through the HTTP receiver: signed provider webhooks in, ledger out."""

import json

import pytest
import requests

from cloudbill.config import WebhookSettings
from cloudbill.delivery.engine import WebhookDeliveryEngine
from cloudbill.ledger.payments import PaymentRepository
from cloudbill.models.payment import PaymentStatus
from cloudbill.models.webhook import ProviderEventType
from cloudbill.receiver.server import ProviderWebhookServer
from cloudbill.utils.factories import signed_event


pytestmark = pytest.mark.e2e


@pytest.fixture
def receiver(verifier, reconciler, refund_service):
    engine = WebhookDeliveryEngine(WebhookSettings(max_retries=1), sleep=lambda s: None)
    server = ProviderWebhookServer(verifier, reconciler, refund_service=refund_service, delivery_engine=engine)
    server.start()
    yield server
    server.stop()
    engine.close()


def _status(db, payment):
    with db.transaction() as session:
        return PaymentRepository(session).get(payment.id, payment.tenant_id).status


def _post_event(receiver, raw, header):
    headers = {"Content-Type": "application/json"}
    if header is not None:
        headers["Stripe-Signature"] = header
    return requests.post(f"{receiver.url}/webhooks/stripe", data=raw, headers=headers, timeout=5)


class TestProviderWebhook:
    def test_signed_event_is_acknowledged_and_reconciled(
        self, db, receiver, payment_factory, event_factory, provider_secret, tenant
    ):
        payment = payment_factory.create(db, tenant_id=tenant, status=PaymentStatus.PENDING)
        raw, header = signed_event(
            event_factory.payment_intent(
                ProviderEventType.PAYMENT_INTENT_SUCCEEDED, payment_intent_id=payment.provider_payment_intent_id
            ),
            provider_secret,
        )

        resp = _post_event(receiver, raw, header)

        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        assert receiver.wait_until_idle()
        assert _status(db, payment) is PaymentStatus.SUCCEEDED

    def test_bad_signature_rejected_and_not_processed(
        self, db, receiver, payment_factory, event_factory, tenant
    ):
        payment = payment_factory.create(db, tenant_id=tenant, status=PaymentStatus.PENDING)
        raw, header = signed_event(
            event_factory.payment_intent(
                ProviderEventType.PAYMENT_INTENT_SUCCEEDED, payment_intent_id=payment.provider_payment_intent_id
            ),
            "whsec_wrong",
        )

        resp = _post_event(receiver, raw, header)

        assert resp.status_code == 400
        assert receiver.wait_until_idle()
        assert _status(db, payment) is PaymentStatus.PENDING

    def test_missing_signature_header(self, receiver, event_factory):
        resp = _post_event(receiver, json.dumps(event_factory.payment_intent()).encode(), None)

        assert resp.status_code == 400
        assert "Stripe-Signature" in resp.json()["error"]

    def test_signature_warning_has_no_payload(self, receiver, event_factory, caplog):
        raw, header = signed_event(event_factory.payment_intent(payment_intent_id="pi_secret_detail"), "whsec_wrong")

        with caplog.at_level("WARNING", logger="cloudbill.provider.verifier"):
            _post_event(receiver, raw, header)

        assert caplog.records
        assert all("pi_secret_detail" not in r.getMessage() for r in caplog.records)

    def test_unhandled_event_acknowledged(self, receiver, event_factory, provider_secret):
        raw, header = signed_event(event_factory.unhandled("customer.created"), provider_secret)

        resp = _post_event(receiver, raw, header)

        assert resp.status_code == 200
        assert receiver.wait_until_idle()
        assert receiver.failed_events == 0

    def test_malformed_verified_event_counted_as_failure(self, receiver, provider_secret):
        raw, header = signed_event({"id": "evt_bad", "type": "payment_intent.succeeded", "data": {}}, provider_secret)

        resp = _post_event(receiver, raw, header)

        assert resp.status_code == 200
        assert receiver.wait_until_idle()
        assert receiver.failed_events == 1

    def test_unknown_route(self, receiver):
        resp = requests.post(f"{receiver.url}/nope", json={}, timeout=5)
        assert resp.status_code == 404


class TestRefundRoute:
    def test_create_refund(self, db, receiver, payment_factory, tenant):
        payment = payment_factory.create(db, tenant_id=tenant)

        resp = requests.post(
            f"{receiver.url}/refunds",
            json={"payment_id": payment.id, "amount": 25.5, "reason": "requested_by_customer"},
            headers={"X-Tenant-ID": tenant},
            timeout=5,
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["amount"] == 25.5
        assert body["data"]["reason"] == "requested_by_customer"

    def test_exceeds_available(self, db, receiver, payment_factory, tenant):
        payment = payment_factory.create(db, tenant_id=tenant, amount=10)

        resp = requests.post(
            f"{receiver.url}/refunds",
            json={"payment_id": payment.id, "amount": 11},
            headers={"X-Tenant-ID": tenant},
            timeout=5,
        )

        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert "exceeds available amount" in body["error"]["message"]

    def test_payment_not_found(self, receiver, tenant):
        resp = requests.post(
            f"{receiver.url}/refunds", json={"payment_id": "missing"}, headers={"X-Tenant-ID": tenant}, timeout=5
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Payment not found"

    def test_validation_error(self, receiver, tenant):
        resp = requests.post(
            f"{receiver.url}/refunds",
            json={"payment_id": "p", "amount": -3},
            headers={"X-Tenant-ID": tenant},
            timeout=5,
        )
        assert resp.status_code == 400
        assert "amount" in resp.json()["error"]["details"]

    @pytest.mark.parametrize("amount", [1e30, "1e30"])
    def test_huge_amount_is_field_error(self, db, receiver, payment_factory, tenant, amount):
        payment = payment_factory.create(db, tenant_id=tenant)

        resp = requests.post(
            f"{receiver.url}/refunds",
            json={"payment_id": payment.id, "amount": amount},
            headers={"X-Tenant-ID": tenant},
            timeout=5,
        )

        assert resp.status_code == 400
        assert "amount" in resp.json()["error"]["details"]

    def test_tenant_header_required(self, receiver):
        resp = requests.post(f"{receiver.url}/refunds", json={"payment_id": "p"}, timeout=5)
        assert resp.status_code == 400
        assert "X-Tenant-ID" in resp.json()["error"]["details"]

    def test_invalid_json(self, receiver, tenant):
        resp = requests.post(
            f"{receiver.url}/refunds", data=b"{not json", headers={"X-Tenant-ID": tenant}, timeout=5
        )
        assert resp.status_code == 400


class TestWebhookSendRoute:
    def test_send_once(self, receiver, endpoint_server):
        resp = requests.post(
            f"{receiver.url}/webhooks/send",
            json={"url": endpoint_server.url, "body": {"event": "invoice.paid"}},
            timeout=5,
        )

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data == {"success": True, "statusCode": 200, "response": {"status": "ok"}}
        assert endpoint_server.get_request_count() == 1

    def test_send_with_retry_reports_attempts(self, receiver, endpoint_server):
        endpoint_server.set_response_code(500)

        resp = requests.post(
            f"{receiver.url}/webhooks/send",
            json={"url": endpoint_server.url, "body": {}, "retry": True, "max_retries": 2},
            timeout=5,
        )

        data = resp.json()["data"]
        assert data["success"] is False
        assert data["statusCode"] == 500
        assert data["attempts"] == 3

    def test_invalid_request(self, receiver):
        resp = requests.post(
            f"{receiver.url}/webhooks/send",
            json={"url": "ftp://example.com", "headers": {"Transfer-Encoding": "chunked"}},
            timeout=5,
        )

        assert resp.status_code == 400
        assert set(resp.json()["error"]["details"]) == {"url", "headers"}

    def test_non_json_number_in_body_rejected(self, receiver, endpoint_server):
        resp = requests.post(
            f"{receiver.url}/webhooks/send",
            data=b'{"url": "%s", "body": {"v": NaN}}' % endpoint_server.url.encode(),
            headers={"Content-Type": "application/json"},
            timeout=5,
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"body": "Webhook body must be JSON-serializable"}
        assert endpoint_server.get_request_count() == 0
