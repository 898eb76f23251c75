import logging
from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from cloudbill.models.base import utcnow
from cloudbill.models.payment import Refund, RefundStatus
from cloudbill.utils.money import ZERO, to_decimal

_log = logging.getLogger(__name__)

HELD_STATUSES = tuple(s for s in RefundStatus if s.holds_funds)


class RefundRepository:
    """Tenant-scoped, append-only access to the refunds table."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        *,
        tenant_id: str,
        payment_id: str,
        provider_refund_id: str,
        amount: Decimal,
        currency: str,
        status: RefundStatus,
        reason: str | None = None,
        metadata: dict | None = None,
    ) -> Refund:
        refund = Refund(
            tenant_id=tenant_id,
            payment_id=payment_id,
            provider_refund_id=provider_refund_id,
            amount=to_decimal(amount),
            currency=currency,
            status=status,
            reason=reason,
            metadata_=metadata,
        )
        self.session.add(refund)
        self.session.flush()
        _log.info(
            "Refund record created",
            extra={
                "refund_id": refund.id,
                "tenant_id": tenant_id,
                "payment_id": payment_id,
                "status": status.value,
            },
        )
        return refund

    def get(self, refund_id: str, tenant_id: str) -> Refund | None:
        stmt = select(Refund).where(Refund.id == refund_id, Refund.tenant_id == tenant_id)
        return self.session.scalars(stmt).one_or_none()

    def find_by_provider_refund_id(self, provider_refund_id: str, tenant_id: str) -> Refund | None:
        stmt = select(Refund).where(
            Refund.provider_refund_id == provider_refund_id, Refund.tenant_id == tenant_id
        )
        return self.session.scalars(stmt).one_or_none()

    def list_for_payment(self, payment_id: str, tenant_id: str) -> list[Refund]:
        stmt = (
            select(Refund)
            .where(Refund.payment_id == payment_id, Refund.tenant_id == tenant_id)
            .order_by(Refund.created_at.desc())
        )
        return list(self.session.scalars(stmt))

    def find_all(
        self,
        tenant_id: str,
        *,
        payment_id: str | None = None,
        status: RefundStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Refund]:
        stmt = select(Refund).where(Refund.tenant_id == tenant_id)
        if payment_id is not None:
            stmt = stmt.where(Refund.payment_id == payment_id)
        if status is not None:
            stmt = stmt.where(Refund.status == status)
        stmt = stmt.order_by(Refund.created_at.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def update_status(
        self,
        refund_id: str,
        tenant_id: str,
        status: RefundStatus,
        failure_reason: str | None = None,
    ) -> Refund | None:
        result = self.session.execute(
            update(Refund)
            .where(Refund.id == refund_id, Refund.tenant_id == tenant_id)
            .values(status=status, failure_reason=failure_reason, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        _log.info(
            "Refund status updated",
            extra={"refund_id": refund_id, "tenant_id": tenant_id, "status": status.value},
        )
        return self.session.get(Refund, refund_id, populate_existing=True)

    def total_amount(
        self,
        payment_id: str,
        tenant_id: str,
        statuses: Iterable[RefundStatus] = HELD_STATUSES,
    ) -> Decimal:
        """Sum of refund amounts for a payment, added up as Decimals."""
        amounts = self.session.scalars(
            select(Refund.amount).where(
                Refund.payment_id == payment_id,
                Refund.tenant_id == tenant_id,
                Refund.status.in_(list(statuses)),
            )
        )
        return sum((to_decimal(a) for a in amounts), ZERO)

    def stats(self, tenant_id: str) -> dict:
        rows = self.session.execute(
            select(Refund.status, func.count(Refund.id))
            .where(Refund.tenant_id == tenant_id)
            .group_by(Refund.status)
        ).all()
        counts = {status: count for status, count in rows}
        succeeded = self.session.scalars(
            select(Refund.amount).where(
                Refund.tenant_id == tenant_id, Refund.status == RefundStatus.SUCCEEDED
            )
        )
        return {
            "total": sum(counts.values()),
            "succeeded": counts.get(RefundStatus.SUCCEEDED, 0),
            "pending": counts.get(RefundStatus.PENDING, 0),
            "failed": counts.get(RefundStatus.FAILED, 0),
            "total_amount": sum((to_decimal(a) for a in succeeded), ZERO),
        }
