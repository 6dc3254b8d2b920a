"""Payment provider facade and implementations."""

from .base import PaymentProvider
from .stripe_provider import StripeProvider
from .webhooks import construct_webhook_event

__all__ = [
    "PaymentProvider",
    "StripeProvider",
    "construct_webhook_event",
]
