from .machine import PaymentReconciler, ReconcileOutcome
from .status import map_payment_intent_status, map_refund_status, status_for_event

__all__ = [
    "PaymentReconciler",
    "ReconcileOutcome",
    "map_payment_intent_status",
    "map_refund_status",
    "status_for_event",
]
