import json
import time
import uuid
from decimal import Decimal

from cloudbill.ledger.db import Database
from cloudbill.ledger.payments import PaymentRepository
from cloudbill.ledger.refunds import RefundRepository
from cloudbill.models.payment import Payment, PaymentStatus, Refund, RefundStatus
from cloudbill.models.webhook import ProviderEventType
from cloudbill.utils.crypto import build_signature_header


class PaymentFactory:
    """Factory for ledger Payment rows with sensible defaults."""

    @staticmethod
    def create(db: Database, **overrides) -> Payment:
        defaults = {
            "tenant_id": f"tenant_{uuid.uuid4().hex[:8]}",
            "provider_payment_intent_id": f"pi_{uuid.uuid4().hex[:16]}",
            "amount": Decimal("100.00"),
            "currency": "usd",
            "status": PaymentStatus.SUCCEEDED,
        }
        defaults.update(overrides)
        with db.transaction() as session:
            return PaymentRepository(session).create(**defaults)


class RefundFactory:
    """Factory for ledger Refund rows attached to an existing payment."""

    @staticmethod
    def create(db: Database, payment: Payment, **overrides) -> Refund:
        defaults = {
            "tenant_id": payment.tenant_id,
            "payment_id": payment.id,
            "provider_refund_id": f"re_{uuid.uuid4().hex[:16]}",
            "amount": Decimal("10.00"),
            "currency": payment.currency,
            "status": RefundStatus.SUCCEEDED,
        }
        defaults.update(overrides)
        with db.transaction() as session:
            return RefundRepository(session).create(**defaults)


class ProviderEventFactory:
    """Factory for provider-shaped webhook event payloads."""

    @staticmethod
    def payment_intent(
        event_type: ProviderEventType | str = ProviderEventType.PAYMENT_INTENT_SUCCEEDED,
        payment_intent_id: str | None = None,
        tenant_id: str | None = "tenant_1",
        **overrides,
    ) -> dict:
        event_type = ProviderEventType(event_type)
        intent_id = payment_intent_id or f"pi_{uuid.uuid4().hex[:16]}"
        obj = {
            "id": intent_id,
            "object": "payment_intent",
            "amount": overrides.pop("amount", 10000),
            "currency": overrides.pop("currency", "usd"),
            "status": overrides.pop("status", _default_intent_status(event_type)),
            "metadata": {"tenant_id": tenant_id} if tenant_id else {},
            "latest_charge": None,
            "last_payment_error": None,
        }
        if event_type == ProviderEventType.PAYMENT_INTENT_SUCCEEDED:
            charge_id = overrides.pop("charge_id", f"ch_{uuid.uuid4().hex[:16]}")
            obj["latest_charge"] = {
                "id": charge_id,
                "receipt_url": overrides.pop("receipt_url", f"https://pay.example.com/receipts/{charge_id}"),
            }
        elif event_type == ProviderEventType.PAYMENT_INTENT_FAILED:
            obj["last_payment_error"] = {
                "code": overrides.pop("failure_code", "card_declined"),
                "message": overrides.pop("failure_message", "Your card was declined."),
            }
        obj.update(overrides)
        return _envelope(event_type.value, obj)

    @staticmethod
    def charge(
        event_type: ProviderEventType | str = ProviderEventType.CHARGE_SUCCEEDED,
        payment_intent_id: str | None = None,
        tenant_id: str | None = "tenant_1",
        **overrides,
    ) -> dict:
        event_type = ProviderEventType(event_type)
        charge_id = overrides.pop("charge_id", f"ch_{uuid.uuid4().hex[:16]}")
        obj = {
            "id": charge_id,
            "object": "charge",
            "payment_intent": payment_intent_id,
            "metadata": {"tenant_id": tenant_id} if tenant_id else {},
            "receipt_url": f"https://pay.example.com/receipts/{charge_id}",
            "failure_code": None,
            "failure_message": None,
        }
        if event_type == ProviderEventType.CHARGE_FAILED:
            obj["receipt_url"] = None
            obj["failure_code"] = "card_declined"
            obj["failure_message"] = "Your card was declined."
        if event_type == ProviderEventType.CHARGE_REFUNDED:
            refunds = overrides.pop("refunds", [])
            obj["refunds"] = {"object": "list", "data": refunds}
        obj.update(overrides)
        return _envelope(event_type.value, obj)

    @staticmethod
    def refund_object(refund_id: str, status: str = "succeeded", amount: int = 1000, **overrides) -> dict:
        obj = {"id": refund_id, "object": "refund", "status": status, "amount": amount}
        obj.update(overrides)
        return obj

    @staticmethod
    def unhandled(event_type: str = "customer.created") -> dict:
        return _envelope(event_type, {"id": f"cus_{uuid.uuid4().hex[:12]}", "object": "customer"})


def _envelope(event_type: str, obj: dict) -> dict:
    return {
        "id": f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "api_version": "2023-10-16",
        "created": int(time.time()),
        "type": event_type,
        "livemode": False,
        "data": {"object": obj},
    }


def _default_intent_status(event_type: ProviderEventType) -> str:
    mapping = {
        ProviderEventType.PAYMENT_INTENT_SUCCEEDED: "succeeded",
        ProviderEventType.PAYMENT_INTENT_FAILED: "requires_payment_method",
        ProviderEventType.PAYMENT_INTENT_CANCELED: "canceled",
        ProviderEventType.PAYMENT_INTENT_REQUIRES_ACTION: "requires_action",
        ProviderEventType.PAYMENT_INTENT_PROCESSING: "processing",
    }
    return mapping.get(event_type, "requires_payment_method")


def signed_event(event: dict, secret: str, timestamp: int | None = None) -> tuple[bytes, str]:
    """Serialize ``event`` and return ``(raw_body, Stripe-Signature header)``."""
    raw = json.dumps(event).encode("utf-8")
    return raw, build_signature_header(raw, secret, timestamp)
