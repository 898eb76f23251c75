import logging

from cloudbill.config import PaymentSettings
from cloudbill.exceptions import DomainError, NotFoundError
from cloudbill.ledger.db import Database
from cloudbill.ledger.payments import PaymentRepository
from cloudbill.models.payment import PaymentStatus
from cloudbill.provider.client import PaymentProvider
from cloudbill.reconciliation.status import map_payment_intent_status
from cloudbill.schemas import PaymentIntentCreated, PaymentIntentCreateRequest, PaymentRead
from cloudbill.utils.money import as_number, to_minor_units

_log = logging.getLogger(__name__)


class PaymentService:
    """Creates and cancels payment intents and mirrors them as local payments."""

    def __init__(self, db: Database, provider: PaymentProvider, settings: PaymentSettings):
        self.db = db
        self.provider = provider
        self.settings = settings

    def create_payment_intent(self, tenant_id: str, request: PaymentIntentCreateRequest) -> dict:
        self.provider.require_ready()
        currency = request.currency or self.settings.currency

        intent = self.provider.create_payment_intent(
            amount_minor=to_minor_units(request.amount),
            currency=currency,
            metadata={
                "tenant_id": tenant_id,
                **({"invoice_id": request.invoice_id} if request.invoice_id else {}),
                **({"subscription_id": request.subscription_id} if request.subscription_id else {}),
                **(request.metadata or {}),
            },
            payment_method_id=request.payment_method_id,
            description=request.description,
        )

        with self.db.transaction() as session:
            payment = PaymentRepository(session).create(
                tenant_id=tenant_id,
                provider_payment_intent_id=intent.id,
                amount=request.amount,
                currency=currency,
                status=map_payment_intent_status(intent.status),
                invoice_id=request.invoice_id,
                subscription_id=request.subscription_id,
                payment_method_id=request.payment_method_id,
                description=request.description,
                metadata=request.metadata,
            )
            _log.info(
                "Payment intent created",
                extra={"tenant_id": tenant_id, "payment_id": payment.id, "payment_intent_id": intent.id},
            )
            return PaymentIntentCreated(
                payment_id=payment.id,
                provider_payment_intent_id=intent.id,
                client_secret=intent.client_secret,
                amount=as_number(payment.amount),
                currency=payment.currency,
                status=payment.status,
            ).model_dump(mode="json")

    def cancel_payment(self, tenant_id: str, payment_id: str) -> dict:
        self.provider.require_ready()
        with self.db.transaction() as session:
            payments = PaymentRepository(session)
            payment = payments.get(payment_id, tenant_id, for_update=True)
            if payment is None:
                raise NotFoundError("Payment", payment_id, tenant_id)
            if payment.status.is_terminal:
                raise DomainError(
                    f"Cannot cancel a payment in status {payment.status.value}",
                    tenant_id=tenant_id,
                    payment_id=payment_id,
                )
            self.provider.cancel_payment_intent(payment.provider_payment_intent_id)
            payment = payments.update_status(payment.id, tenant_id, PaymentStatus.CANCELLED)
            _log.info("Payment cancelled", extra={"tenant_id": tenant_id, "payment_id": payment_id})
            return PaymentRead.model_validate(payment).model_dump(mode="json")

    def get_payment(self, tenant_id: str, payment_id: str) -> dict:
        with self.db.transaction() as session:
            payment = PaymentRepository(session).get(payment_id, tenant_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id, tenant_id)
            return PaymentRead.model_validate(payment).model_dump(mode="json")

    def list_payments(self, tenant_id: str, **filters) -> list[dict]:
        with self.db.transaction() as session:
            rows = PaymentRepository(session).find_all(tenant_id, **filters)
            return [PaymentRead.model_validate(p).model_dump(mode="json") for p in rows]

    def stats(self, tenant_id: str) -> dict:
        with self.db.transaction() as session:
            stats = PaymentRepository(session).stats(tenant_id)
        stats["total_amount"] = as_number(stats["total_amount"])
        return stats
