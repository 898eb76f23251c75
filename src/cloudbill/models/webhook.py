"""Inbound provider events, one variant per event kind.

``parse_provider_event`` turns a verified provider payload into exactly one
of the variants below; each variant carries only the fields its kind uses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from cloudbill.exceptions import ValidationError


class ProviderEventType(str, Enum):
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
    PAYMENT_INTENT_REQUIRES_ACTION = "payment_intent.requires_action"
    PAYMENT_INTENT_PROCESSING = "payment_intent.processing"
    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_FAILED = "charge.failed"
    CHARGE_REFUNDED = "charge.refunded"


PAYMENT_INTENT_EVENTS = {
    ProviderEventType.PAYMENT_INTENT_SUCCEEDED,
    ProviderEventType.PAYMENT_INTENT_FAILED,
    ProviderEventType.PAYMENT_INTENT_CANCELED,
    ProviderEventType.PAYMENT_INTENT_REQUIRES_ACTION,
    ProviderEventType.PAYMENT_INTENT_PROCESSING,
}
CHARGE_EVENTS = {ProviderEventType.CHARGE_SUCCEEDED, ProviderEventType.CHARGE_FAILED}


@dataclass(frozen=True)
class PaymentIntentEvent:
    event_id: str
    event_type: ProviderEventType
    payment_intent_id: str
    status: str
    tenant_id: str | None
    charge_id: str | None = None
    receipt_url: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None


@dataclass(frozen=True)
class ChargeEvent:
    event_id: str
    event_type: ProviderEventType
    charge_id: str
    payment_intent_id: str | None
    tenant_id: str | None
    receipt_url: str | None = None
    failure_code: str | None = None
    failure_message: str | None = None


@dataclass(frozen=True)
class ProviderRefund:
    refund_id: str
    status: str
    amount_minor: int | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class ChargeRefundedEvent:
    event_id: str
    charge_id: str
    payment_intent_id: str | None
    tenant_id: str | None
    refunds: tuple[ProviderRefund, ...] = field(default_factory=tuple)

    event_type = ProviderEventType.CHARGE_REFUNDED


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


ProviderEvent = Union[PaymentIntentEvent, ChargeEvent, ChargeRefundedEvent, UnhandledEvent]


def _id_of(value: Any) -> str | None:
    """Provider references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _tenant_of(obj: dict) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get("tenant_id") or None


def _first_receipt_url(intent: dict) -> str | None:
    latest = intent.get("latest_charge")
    if isinstance(latest, dict) and latest.get("receipt_url"):
        return latest["receipt_url"]
    charges = (intent.get("charges") or {}).get("data") or []
    if charges:
        return charges[0].get("receipt_url")
    return None


def parse_provider_event(payload: dict) -> ProviderEvent:
    """Build the typed variant for a provider event payload."""
    if not isinstance(payload, dict):
        raise ValidationError("Malformed provider event", {"event": "must be an object"})
    event_id = payload.get("id")
    raw_type = payload.get("type")
    obj = (payload.get("data") or {}).get("object")
    if not event_id or not raw_type:
        raise ValidationError("Malformed provider event", {"event": "id and type are required"})

    try:
        event_type = ProviderEventType(raw_type)
    except ValueError:
        return UnhandledEvent(event_id=event_id, event_type=raw_type)

    if not isinstance(obj, dict) or not obj.get("id"):
        raise ValidationError("Malformed provider event", {"data.object": "object with an id is required"})

    if event_type in PAYMENT_INTENT_EVENTS:
        error = obj.get("last_payment_error") or {}
        return PaymentIntentEvent(
            event_id=event_id,
            event_type=event_type,
            payment_intent_id=obj["id"],
            status=obj.get("status") or "",
            tenant_id=_tenant_of(obj),
            charge_id=_id_of(obj.get("latest_charge")),
            receipt_url=_first_receipt_url(obj),
            failure_code=error.get("code"),
            failure_message=error.get("message"),
        )

    if event_type in CHARGE_EVENTS:
        return ChargeEvent(
            event_id=event_id,
            event_type=event_type,
            charge_id=obj["id"],
            payment_intent_id=_id_of(obj.get("payment_intent")),
            tenant_id=_tenant_of(obj),
            receipt_url=obj.get("receipt_url"),
            failure_code=obj.get("failure_code"),
            failure_message=obj.get("failure_message"),
        )

    refunds = tuple(
        ProviderRefund(
            refund_id=r["id"],
            status=r.get("status") or "",
            amount_minor=r.get("amount"),
            failure_reason=r.get("failure_reason"),
        )
        for r in ((obj.get("refunds") or {}).get("data") or [])
        if r.get("id")
    )
    return ChargeRefundedEvent(
        event_id=event_id,
        charge_id=obj["id"],
        payment_intent_id=_id_of(obj.get("payment_intent")),
        tenant_id=_tenant_of(obj),
        refunds=refunds,
    )
