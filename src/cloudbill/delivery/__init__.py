from .engine import WebhookDeliveryEngine
from .logger import DeliveryLogger
from .retry import RetryPolicy, next_delay
from .signer import WebhookSigner

__all__ = [
    "WebhookDeliveryEngine",
    "RetryPolicy",
    "next_delay",
    "DeliveryLogger",
    "WebhookSigner",
]
