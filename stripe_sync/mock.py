"""
Mock payment provider for testing.

Provides an in-memory implementation of PaymentProvider for testing
without making real Stripe API calls. Webhook signatures are still
verified for real, so tests sign their payloads with sign_payload().
"""

import hashlib
import hmac
import json
import time
import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from .exceptions import ErrorCode, NotFoundError, UpstreamOperationError
from .models import (
    CheckoutOptions,
    CheckoutSession,
    Customer,
    CustomerData,
    PortalSession,
    Subscription,
    SubscriptionItem,
    SubscriptionOptions,
    SubscriptionStatus,
    WebhookEvent,
)
from .providers import PaymentProvider, construct_webhook_event


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


# Factory functions for creating test data


def customer_factory(**kwargs: Any) -> Customer:
    """Create a test Customer."""
    return Customer(
        id=kwargs.get("id", f"cus_{uuid.uuid4().hex[:14]}"),
        email=kwargs.get("email", f"test-{uuid.uuid4().hex[:6]}@example.com"),
        name=kwargs.get("name"),
        metadata=kwargs.get("metadata", {}),
        created_at=kwargs.get("created_at", _now()),
    )


def subscription_factory(**kwargs: Any) -> Subscription:
    """Create a test Subscription."""
    now = _now()
    price_id = kwargs.get("price_id", f"price_{uuid.uuid4().hex[:14]}")
    return Subscription(
        id=kwargs.get("id", f"sub_{uuid.uuid4().hex[:14]}"),
        customer_id=kwargs.get("customer_id", f"cus_{uuid.uuid4().hex[:14]}"),
        status=kwargs.get("status", SubscriptionStatus.ACTIVE),
        current_period_start=kwargs.get("current_period_start", now),
        current_period_end=kwargs.get("current_period_end", now + timedelta(days=30)),
        cancel_at_period_end=kwargs.get("cancel_at_period_end", False),
        items=kwargs.get(
            "items",
            (
                SubscriptionItem(
                    id=f"si_{uuid.uuid4().hex[:14]}",
                    price_id=price_id,
                    quantity=kwargs.get("quantity", 1),
                ),
            ),
        ),
        metadata=kwargs.get("metadata", {}),
        created_at=kwargs.get("created_at", now),
    )


def checkout_session_factory(**kwargs: Any) -> CheckoutSession:
    """Create a test CheckoutSession."""
    session_id = kwargs.get("id", f"cs_{uuid.uuid4().hex[:24]}")
    return CheckoutSession(
        id=session_id,
        url=kwargs.get("url", f"https://checkout.stripe.com/c/pay/{session_id}"),
        status=kwargs.get("status", "open"),
        customer_id=kwargs.get("customer_id"),
        metadata=kwargs.get("metadata", {}),
        created_at=kwargs.get("created_at", _now()),
    )


def webhook_event_factory(**kwargs: Any) -> WebhookEvent:
    """Create a test WebhookEvent."""
    return WebhookEvent(
        id=kwargs.get("id", f"evt_{uuid.uuid4().hex[:14]}"),
        type=kwargs.get("type", "checkout.session.completed"),
        data=kwargs.get("data", {}),
        created=kwargs.get("created", _now()),
        livemode=kwargs.get("livemode", False),
    )


# Webhook payload helpers


def build_event_payload(
    event_type: str,
    data_object: dict[str, Any],
    event_id: str | None = None,
    created: int | None = None,
) -> str:
    """Serialize a webhook envelope the way Stripe sends it."""
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid.uuid4().hex[:14]}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()) if created is None else created,
            "livemode": False,
            "data": {"object": data_object},
        }
    )


def sign_payload(payload: str, secret: str, timestamp: int | None = None) -> str:
    """Build a stripe-signature header value for payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class MockPaymentProvider(PaymentProvider):
    """Mock payment provider for testing.

    Stores data in memory and simulates Stripe API behavior. Every call is
    counted in ``calls`` by operation name.

    Example:
        provider = MockPaymentProvider()

        # Pre-populate with test data
        provider.add_customer(customer_factory(email="test@example.com"))

        # Or let it create on demand
        customer = await provider.create_customer(CustomerData(email="new@example.com"))
    """

    name = "mock"

    def __init__(self) -> None:
        """Initialize the mock provider."""
        self._customers: dict[str, Customer] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._checkout_sessions: dict[str, CheckoutSession] = {}
        self.calls: Counter[str] = Counter()

        # Control flags for testing error scenarios
        self._should_fail = False
        self._fail_message = "Mock failure"

    # Control methods for testing

    def set_should_fail(self, should_fail: bool, message: str = "Mock failure") -> None:
        """Configure the mock to fail on next operation."""
        self._should_fail = should_fail
        self._fail_message = message

    def add_customer(self, customer: Customer) -> None:
        """Add a customer to the mock store."""
        self._customers[customer.id] = customer

    def add_subscription(self, subscription: Subscription) -> None:
        """Add a subscription to the mock store."""
        self._subscriptions[subscription.id] = subscription

    def add_checkout_session(self, session: CheckoutSession) -> None:
        """Add a checkout session to the mock store."""
        self._checkout_sessions[session.id] = session

    def update_subscription(self, subscription_id: str, **changes: Any) -> Subscription:
        """Replace a stored subscription with an updated copy."""
        subscription = replace(self._subscriptions[subscription_id], **changes)
        self._subscriptions[subscription_id] = subscription
        return subscription

    def clear(self) -> None:
        """Clear all stored data and call counts."""
        self._customers.clear()
        self._subscriptions.clear()
        self._checkout_sessions.clear()
        self.calls.clear()

    def _record(self, operation: str) -> None:
        self.calls[operation] += 1
        if self._should_fail:
            self._should_fail = False  # Reset after one failure
            raise UpstreamOperationError(
                self._fail_message,
                code=ErrorCode.PAYMENT_FAILED,
                details={"operation": operation},
            )

    # Webhook operations

    def verify_webhook_signature(
        self, payload: bytes | str, signature: str, secret: str
    ) -> WebhookEvent:
        """Verify webhook signature and parse event."""
        self.calls["verify_webhook_signature"] += 1
        return construct_webhook_event(payload, signature, secret)

    # Retrieval

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        self._record("retrieve_checkout_session")
        session = self._checkout_sessions.get(session_id)
        if session is None:
            raise NotFoundError(
                f"Checkout session not found: {session_id}",
                code=ErrorCode.CHECKOUT_SESSION_NOT_FOUND,
                details={"session_id": session_id},
            )
        return session

    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        self._record("retrieve_subscription")
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription not found: {subscription_id}",
                code=ErrorCode.SUBSCRIPTION_NOT_FOUND,
                details={"subscription_id": subscription_id},
            )
        return subscription

    async def retrieve_customer(self, customer_id: str) -> Customer:
        self._record("retrieve_customer")
        customer = self._customers.get(customer_id)
        if customer is None:
            raise NotFoundError(
                f"Customer not found: {customer_id}",
                code=ErrorCode.CUSTOMER_NOT_FOUND,
                details={"customer_id": customer_id},
            )
        return customer

    # Creation

    async def create_customer(self, data: CustomerData) -> Customer:
        """Create a mock customer."""
        self._record("create_customer")

        customer = customer_factory(
            email=data.email,
            name=data.name,
            metadata=dict(data.metadata),
        )
        self._customers[customer.id] = customer
        return customer

    async def create_checkout_session(self, options: CheckoutOptions) -> CheckoutSession:
        """Create a mock checkout session."""
        self._record("create_checkout_session")

        session = checkout_session_factory(
            customer_id=options.customer_id,
            metadata=dict(options.metadata),
        )
        self._checkout_sessions[session.id] = session
        return session

    async def create_subscription(self, options: SubscriptionOptions) -> Subscription:
        """Create a mock subscription directly."""
        self._record("create_subscription")

        if options.customer_id not in self._customers:
            raise NotFoundError(
                f"Customer not found: {options.customer_id}",
                code=ErrorCode.CUSTOMER_NOT_FOUND,
                details={"customer_id": options.customer_id},
            )

        status = SubscriptionStatus.TRIALING if options.trial_days else SubscriptionStatus.ACTIVE
        subscription = subscription_factory(
            customer_id=options.customer_id,
            price_id=options.price_id,
            quantity=options.quantity,
            status=status,
            metadata=dict(options.metadata),
        )
        self._subscriptions[subscription.id] = subscription
        return subscription

    # Billing portal

    async def create_portal_session(self, customer_id: str, return_url: str) -> PortalSession:
        """Create a mock billing portal session."""
        self._record("create_portal_session")

        if customer_id not in self._customers:
            raise NotFoundError(
                f"Customer not found: {customer_id}",
                code=ErrorCode.CUSTOMER_NOT_FOUND,
                details={"customer_id": customer_id},
            )

        session_id = f"bps_{uuid.uuid4().hex[:24]}"
        return PortalSession(url=f"https://billing.stripe.com/p/session/{session_id}")

    # Simulation helpers

    def simulate_checkout_complete(self, session_id: str) -> tuple[Customer, Subscription]:
        """Simulate a checkout completion.

        Creates customer (if the session has none) and subscription, marks
        the session complete. Returns the customer and subscription.
        """
        session = self._checkout_sessions.get(session_id)
        if not session:
            raise ValueError(f"Checkout session not found: {session_id}")

        customer = self._customers.get(session.customer_id) if session.customer_id else None
        if not customer:
            customer = customer_factory(metadata=dict(session.metadata))
            self._customers[customer.id] = customer

        subscription = subscription_factory(
            customer_id=customer.id,
            metadata=dict(session.metadata),
        )
        self._subscriptions[subscription.id] = subscription

        self._checkout_sessions[session_id] = replace(
            session, status="complete", customer_id=customer.id
        )

        return customer, subscription
