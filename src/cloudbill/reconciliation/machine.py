"""Applies verified provider events to the local ledger.

Every transition is "set the mapped status", so applying an event twice or
out of order converges on the last applied state. Event ids that have been
applied are also recorded and skipped on redelivery.
"""

import enum
import logging
from typing import assert_never

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cloudbill.ledger.db import Database
from cloudbill.ledger.events import ProcessedEventRepository
from cloudbill.ledger.payments import PaymentRepository
from cloudbill.ledger.refunds import RefundRepository
from cloudbill.models.payment import PaymentStatus, RefundStatus
from cloudbill.models.webhook import (
    ChargeEvent,
    ChargeRefundedEvent,
    PaymentIntentEvent,
    ProviderEvent,
    UnhandledEvent,
    parse_provider_event,
)
from cloudbill.reconciliation.status import map_refund_status, status_for_event

_log = logging.getLogger(__name__)


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    MISSING_TENANT = "missing_tenant"
    UNKNOWN_PAYMENT = "unknown_payment"
    IGNORED = "ignored"


class PaymentReconciler:
    def __init__(self, db: Database):
        self.db = db

    def handle_payload(self, payload: dict) -> ReconcileOutcome:
        """Parse a verified provider payload and apply it."""
        return self.apply_provider_event(parse_provider_event(payload))

    def apply_provider_event(self, event: ProviderEvent) -> ReconcileOutcome:
        if isinstance(event, UnhandledEvent):
            _log.info(
                "Unhandled webhook event type",
                extra={"event_id": event.event_id, "event_type": event.event_type},
            )
            return ReconcileOutcome.IGNORED

        if not event.tenant_id:
            _log.warning(
                "Webhook event has no tenant_id in metadata, skipping",
                extra={"event_id": event.event_id, "event_type": event.event_type.value},
            )
            return ReconcileOutcome.MISSING_TENANT

        try:
            with self.db.transaction() as session:
                events = ProcessedEventRepository(session)
                if events.has_processed(event.event_id, event.tenant_id):
                    _log.info(
                        "Webhook event already processed",
                        extra={"event_id": event.event_id, "tenant_id": event.tenant_id},
                    )
                    return ReconcileOutcome.DUPLICATE

                if isinstance(event, PaymentIntentEvent):
                    outcome = self._apply_payment_intent(session, event)
                elif isinstance(event, ChargeEvent):
                    outcome = self._apply_charge(session, event)
                elif isinstance(event, ChargeRefundedEvent):
                    outcome = self._apply_refunds(session, event)
                else:
                    assert_never(event)

                if outcome is ReconcileOutcome.APPLIED:
                    events.record(event.event_id, event.tenant_id, event.event_type.value)
        except IntegrityError:
            # A concurrent delivery of the same event id committed first
            _log.info(
                "Webhook event applied concurrently",
                extra={"event_id": event.event_id, "tenant_id": event.tenant_id},
            )
            return ReconcileOutcome.DUPLICATE
        return outcome

    def _apply_payment_intent(self, session: Session, event: PaymentIntentEvent) -> ReconcileOutcome:
        payments = PaymentRepository(session)
        payment = payments.find_by_intent(event.payment_intent_id, event.tenant_id)
        if payment is None:
            _log.info(
                "No local payment for payment intent",
                extra={"payment_intent_id": event.payment_intent_id, "tenant_id": event.tenant_id},
            )
            return ReconcileOutcome.UNKNOWN_PAYMENT

        status = status_for_event(event.event_type, event.status)
        details = {}
        if status is PaymentStatus.SUCCEEDED:
            details = {"provider_charge_id": event.charge_id, "receipt_url": event.receipt_url}
        elif status is PaymentStatus.FAILED:
            details = {"failure_code": event.failure_code, "failure_message": event.failure_message}

        payments.update_status(payment.id, event.tenant_id, status, **details)
        _log.info(
            "Payment reconciled",
            extra={
                "event_type": event.event_type.value,
                "payment_id": payment.id,
                "tenant_id": event.tenant_id,
                "status": status.value,
            },
        )
        return ReconcileOutcome.APPLIED

    def _apply_charge(self, session: Session, event: ChargeEvent) -> ReconcileOutcome:
        payments = PaymentRepository(session)
        payment = None
        if event.payment_intent_id:
            payment = payments.find_by_intent(event.payment_intent_id, event.tenant_id)
        if payment is None:
            _log.info(
                "No local payment for charge",
                extra={"charge_id": event.charge_id, "tenant_id": event.tenant_id},
            )
            return ReconcileOutcome.UNKNOWN_PAYMENT

        status = status_for_event(event.event_type)
        if status is PaymentStatus.SUCCEEDED:
            details = {"provider_charge_id": event.charge_id, "receipt_url": event.receipt_url}
        else:
            details = {
                "provider_charge_id": event.charge_id,
                "failure_code": event.failure_code,
                "failure_message": event.failure_message,
            }
        payments.update_status(payment.id, event.tenant_id, status, **details)
        _log.info(
            "Payment reconciled from charge",
            extra={
                "event_type": event.event_type.value,
                "payment_id": payment.id,
                "tenant_id": event.tenant_id,
                "status": status.value,
            },
        )
        return ReconcileOutcome.APPLIED

    def _apply_refunds(self, session: Session, event: ChargeRefundedEvent) -> ReconcileOutcome:
        refunds = RefundRepository(session)
        updated = skipped = 0
        for provider_refund in event.refunds:
            refund = refunds.find_by_provider_refund_id(provider_refund.refund_id, event.tenant_id)
            if refund is None:
                # Local refunds are only created through RefundService
                _log.info(
                    "Skipping refund with no local record",
                    extra={"provider_refund_id": provider_refund.refund_id, "tenant_id": event.tenant_id},
                )
                skipped += 1
                continue
            status = map_refund_status(provider_refund.status)
            failure_reason = provider_refund.failure_reason if status is RefundStatus.FAILED else None
            refunds.update_status(refund.id, event.tenant_id, status, failure_reason=failure_reason)
            updated += 1

        _log.info(
            "Charge refunds reconciled",
            extra={
                "charge_id": event.charge_id,
                "tenant_id": event.tenant_id,
                "updated": updated,
                "skipped": skipped,
            },
        )
        return ReconcileOutcome.APPLIED
