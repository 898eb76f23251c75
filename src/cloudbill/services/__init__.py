from .payments import PaymentService
from .refunds import RefundService

__all__ = ["PaymentService", "RefundService"]
