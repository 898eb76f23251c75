import logging
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cloudbill.models.base import utcnow
from cloudbill.models.payment import Payment, PaymentStatus
from cloudbill.utils.money import ZERO, to_decimal

_log = logging.getLogger(__name__)


class PaymentRepository:
    """Tenant-scoped reads and writes over the payments table."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        *,
        tenant_id: str,
        provider_payment_intent_id: str,
        amount: Decimal,
        currency: str,
        status: PaymentStatus = PaymentStatus.PENDING,
        invoice_id: str | None = None,
        subscription_id: str | None = None,
        payment_method_id: str | None = None,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> Payment:
        payment = Payment(
            tenant_id=tenant_id,
            provider_payment_intent_id=provider_payment_intent_id,
            amount=to_decimal(amount),
            currency=currency.lower(),
            status=status,
            invoice_id=invoice_id,
            subscription_id=subscription_id,
            payment_method_id=payment_method_id,
            description=description,
            metadata_=metadata,
        )
        self.session.add(payment)
        self.session.flush()
        _log.info(
            "Payment record created",
            extra={"payment_id": payment.id, "tenant_id": tenant_id, "status": status.value},
        )
        return payment

    def get(self, payment_id: str, tenant_id: str, *, for_update: bool = False) -> Payment | None:
        stmt = select(Payment).where(Payment.id == payment_id, Payment.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalars(stmt).one_or_none()

    def find_by_intent(self, provider_payment_intent_id: str, tenant_id: str) -> Payment | None:
        stmt = select(Payment).where(
            Payment.provider_payment_intent_id == provider_payment_intent_id,
            Payment.tenant_id == tenant_id,
        )
        return self.session.scalars(stmt).one_or_none()

    def find_all(
        self,
        tenant_id: str,
        *,
        status: PaymentStatus | None = None,
        invoice_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payment]:
        stmt = select(Payment).where(Payment.tenant_id == tenant_id)
        if status is not None:
            stmt = stmt.where(Payment.status == status)
        if invoice_id is not None:
            stmt = stmt.where(Payment.invoice_id == invoice_id)
        stmt = stmt.order_by(Payment.created_at.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def update_status(
        self,
        payment_id: str,
        tenant_id: str,
        status: PaymentStatus,
        *,
        provider_charge_id: str | None = None,
        failure_code: str | None = None,
        failure_message: str | None = None,
        receipt_url: str | None = None,
    ) -> Payment | None:
        """Set the status (and any supplied detail fields) and bump updated_at.

        Fields passed as None are left untouched, so reapplying the same
        update is a no-op apart from the timestamp. Moving to SUCCEEDED
        clears any failure code and message left by an earlier failure.
        """
        values = {"status": status, "updated_at": utcnow()}
        if status is PaymentStatus.SUCCEEDED:
            values["failure_code"] = None
            values["failure_message"] = None
        if provider_charge_id is not None:
            values["provider_charge_id"] = provider_charge_id
        if failure_code is not None:
            values["failure_code"] = failure_code
        if failure_message is not None:
            values["failure_message"] = failure_message
        if receipt_url is not None:
            values["receipt_url"] = receipt_url

        result = self.session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.tenant_id == tenant_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        _log.info(
            "Payment status updated",
            extra={"payment_id": payment_id, "tenant_id": tenant_id, "status": status.value},
        )
        return self.session.get(Payment, payment_id, populate_existing=True)

    def stats(self, tenant_id: str) -> dict:
        rows = self.session.execute(
            select(Payment.status, func.count(Payment.id))
            .where(Payment.tenant_id == tenant_id)
            .group_by(Payment.status)
        ).all()
        counts = {status: count for status, count in rows}
        succeeded = self.session.scalars(
            select(Payment.amount).where(
                Payment.tenant_id == tenant_id, Payment.status == PaymentStatus.SUCCEEDED
            )
        )
        return {
            "total": sum(counts.values()),
            "succeeded": counts.get(PaymentStatus.SUCCEEDED, 0),
            "failed": counts.get(PaymentStatus.FAILED, 0),
            "pending": counts.get(PaymentStatus.PENDING, 0),
            "total_amount": sum((to_decimal(a) for a in succeeded), ZERO),
        }
