"""Provider status vocabulary mapped onto local payment/refund states."""

from cloudbill.models.payment import PaymentStatus, RefundStatus
from cloudbill.models.webhook import ProviderEventType

# Provider side is case-sensitive; anything unlisted falls back to pending
PAYMENT_INTENT_STATUS_MAP = {
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.REQUIRES_ACTION,
    "processing": PaymentStatus.PROCESSING,
    "requires_capture": PaymentStatus.PROCESSING,
    "canceled": PaymentStatus.CANCELLED,
    "succeeded": PaymentStatus.SUCCEEDED,
}

REFUND_STATUS_MAP = {
    "pending": RefundStatus.PENDING,
    "succeeded": RefundStatus.SUCCEEDED,
    "failed": RefundStatus.FAILED,
    "canceled": RefundStatus.CANCELLED,
}

# Event kinds whose meaning fixes the local status regardless of the
# object's own status field (a failed intent reports requires_payment_method).
EVENT_STATUS_OVERRIDES = {
    ProviderEventType.PAYMENT_INTENT_FAILED: PaymentStatus.FAILED,
    ProviderEventType.CHARGE_SUCCEEDED: PaymentStatus.SUCCEEDED,
    ProviderEventType.CHARGE_FAILED: PaymentStatus.FAILED,
}


def map_payment_intent_status(provider_status: str | None) -> PaymentStatus:
    return PAYMENT_INTENT_STATUS_MAP.get(provider_status, PaymentStatus.PENDING)


def map_refund_status(provider_status: str | None) -> RefundStatus:
    return REFUND_STATUS_MAP.get(provider_status, RefundStatus.PENDING)


def status_for_event(event_type: ProviderEventType, provider_status: str | None = None) -> PaymentStatus:
    if event_type in EVENT_STATUS_OVERRIDES:
        return EVENT_STATUS_OVERRIDES[event_type]
    return map_payment_intent_status(provider_status)
