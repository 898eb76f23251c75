from .base import Base
from .delivery import DeliveryAttempt, DeliveryOutcome, DeliveryResult, WebhookTarget
from .payment import Payment, PaymentStatus, ProcessedEvent, Refund, RefundReason, RefundStatus
from .webhook import (
    ChargeEvent,
    ChargeRefundedEvent,
    PaymentIntentEvent,
    ProviderEvent,
    ProviderEventType,
    ProviderRefund,
    UnhandledEvent,
    parse_provider_event,
)

__all__ = [
    "Base",
    "Payment", "PaymentStatus", "Refund", "RefundStatus", "RefundReason", "ProcessedEvent",
    "WebhookTarget", "DeliveryResult", "DeliveryAttempt", "DeliveryOutcome",
    "ProviderEvent", "ProviderEventType", "PaymentIntentEvent", "ChargeEvent",
    "ChargeRefundedEvent", "ProviderRefund", "UnhandledEvent", "parse_provider_event",
]
