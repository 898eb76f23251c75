from .db import Database
from .events import ProcessedEventRepository
from .payments import PaymentRepository
from .refunds import RefundRepository

__all__ = ["Database", "PaymentRepository", "RefundRepository", "ProcessedEventRepository"]
