"""
Payment provider interface.

The narrow surface this package needs from an upstream payment provider.
New providers implement the same interface.
"""

from abc import ABC, abstractmethod

from ..models import (
    CheckoutOptions,
    CheckoutSession,
    Customer,
    CustomerData,
    PortalSession,
    Subscription,
    SubscriptionOptions,
    WebhookEvent,
)


class PaymentProvider(ABC):
    """Abstract interface for upstream payment operations."""

    name: str = "provider"

    # Webhook operations
    @abstractmethod
    def verify_webhook_signature(
        self, payload: bytes | str, signature: str, secret: str
    ) -> WebhookEvent:
        """Verify webhook signature and parse event.

        Raises:
            SignatureError: If the signature, secret or payload is invalid
        """
        ...

    # Retrieval
    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """Fetch the current state of a checkout session."""
        ...

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        """Fetch the current state of a subscription."""
        ...

    @abstractmethod
    async def retrieve_customer(self, customer_id: str) -> Customer:
        """Fetch the current state of a customer."""
        ...

    # Creation
    @abstractmethod
    async def create_customer(self, data: CustomerData) -> Customer:
        """Create a new customer."""
        ...

    @abstractmethod
    async def create_checkout_session(self, options: CheckoutOptions) -> CheckoutSession:
        """Create a checkout session."""
        ...

    @abstractmethod
    async def create_subscription(self, options: SubscriptionOptions) -> Subscription:
        """Create a subscription directly (without checkout session)."""
        ...

    # Billing portal
    @abstractmethod
    async def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> PortalSession:
        """Create a billing portal session."""
        ...
