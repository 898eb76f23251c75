from .client import PaymentProvider, ProviderPaymentIntent, ProviderRefundResult, StripeProvider
from .verifier import EventVerifier, StripeEventVerifier

__all__ = [
    "PaymentProvider",
    "ProviderPaymentIntent",
    "ProviderRefundResult",
    "StripeProvider",
    "EventVerifier",
    "StripeEventVerifier",
]
