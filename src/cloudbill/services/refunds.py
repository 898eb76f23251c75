import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from decimal import Decimal

from cloudbill.exceptions import DomainError, NotFoundError, RefundExceedsAvailableError
from cloudbill.ledger.db import Database
from cloudbill.ledger.payments import PaymentRepository
from cloudbill.ledger.refunds import RefundRepository
from cloudbill.models.payment import RefundReason, RefundStatus
from cloudbill.provider.client import PaymentProvider
from cloudbill.reconciliation.status import map_refund_status
from cloudbill.schemas import RefundRead
from cloudbill.utils.money import ZERO, as_number, to_decimal, to_minor_units
from cloudbill.utils.validators import validate_amount, validate_refund_reason

_log = logging.getLogger(__name__)


class KeyedLock:
    """One mutex per key, dropped again once no thread holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]


class RefundService:
    """Refund creation against local accounting, plus refund queries.

    The refundable balance is read, checked, and the new refund row written
    while the parent payment row is locked (``SELECT ... FOR UPDATE``), and
    creation for one payment is also serialized within the process, so two
    concurrent requests cannot both spend the same balance.
    """

    def __init__(self, db: Database, provider: PaymentProvider):
        self.db = db
        self.provider = provider
        self._payment_locks = KeyedLock()

    def create_refund(
        self,
        tenant_id: str,
        payment_id: str,
        amount=None,
        reason: RefundReason | str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict:
        self.provider.require_ready()
        requested = None if amount is None else validate_amount(amount)
        refund_reason = validate_refund_reason(reason)

        with self._payment_locks.hold(payment_id), self.db.transaction() as session:
            payments = PaymentRepository(session)
            refunds = RefundRepository(session)

            payment = payments.get(payment_id, tenant_id, for_update=True)
            if payment is None:
                raise NotFoundError("Payment", payment_id, tenant_id)

            already_refunded = refunds.total_amount(payment.id, tenant_id)
            available = to_decimal(payment.amount) - already_refunded
            if requested is None:
                if available <= ZERO:
                    raise DomainError(
                        "Payment has no remaining amount to refund",
                        tenant_id=tenant_id,
                        payment_id=payment_id,
                    )
                requested = available
            if requested > available:
                raise RefundExceedsAvailableError(
                    requested, available, tenant_id=tenant_id, payment_id=payment_id
                )

            result = self.provider.create_refund(
                payment_intent_id=payment.provider_payment_intent_id,
                amount_minor=to_minor_units(requested),
                reason=refund_reason,
                metadata={"tenant_id": tenant_id, "payment_id": payment.id, **(metadata or {})},
            )

            refund = refunds.create(
                tenant_id=tenant_id,
                payment_id=payment.id,
                provider_refund_id=result.id,
                amount=requested,
                currency=payment.currency,
                status=map_refund_status(result.status),
                reason=refund_reason.value if refund_reason else None,
                metadata=metadata,
            )
            _log.info(
                "Refund created",
                extra={
                    "tenant_id": tenant_id,
                    "refund_id": refund.id,
                    "payment_id": payment.id,
                    "amount": str(requested),
                },
            )
            return RefundRead.model_validate(refund).model_dump(mode="json")

    def available_to_refund(self, tenant_id: str, payment_id: str) -> Decimal:
        with self.db.transaction() as session:
            payment = PaymentRepository(session).get(payment_id, tenant_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id, tenant_id)
            held = RefundRepository(session).total_amount(payment.id, tenant_id)
            return to_decimal(payment.amount) - held

    def get_refund(self, tenant_id: str, refund_id: str) -> dict:
        with self.db.transaction() as session:
            refund = RefundRepository(session).get(refund_id, tenant_id)
            if refund is None:
                raise NotFoundError("Refund", refund_id, tenant_id)
            return RefundRead.model_validate(refund).model_dump(mode="json")

    def list_refunds(self, tenant_id: str, payment_id: str | None = None, **filters) -> list[dict]:
        with self.db.transaction() as session:
            rows = RefundRepository(session).find_all(tenant_id, payment_id=payment_id, **filters)
            return [RefundRead.model_validate(r).model_dump(mode="json") for r in rows]

    def update_refund_status(
        self,
        tenant_id: str,
        refund_id: str,
        status: RefundStatus,
        failure_reason: str | None = None,
    ) -> dict:
        with self.db.transaction() as session:
            refund = RefundRepository(session).update_status(refund_id, tenant_id, status, failure_reason)
            if refund is None:
                raise NotFoundError("Refund", refund_id, tenant_id)
            return RefundRead.model_validate(refund).model_dump(mode="json")

    def stats(self, tenant_id: str) -> dict:
        with self.db.transaction() as session:
            stats = RefundRepository(session).stats(tenant_id)
        stats["total_amount"] = as_number(stats["total_amount"])
        return stats
