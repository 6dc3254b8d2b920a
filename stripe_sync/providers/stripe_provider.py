"""
Stripe provider implementation.

Concrete PaymentProvider backed by the official Stripe SDK. Each provider
owns its own stripe.StripeClient; no module-level API key is set.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable

import stripe
import structlog

from ..config import StripeConfig
from ..exceptions import (
    BillingError,
    ErrorCode,
    NotFoundError,
    UpstreamOperationError,
)
from ..models import (
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
from .base import PaymentProvider
from .webhooks import construct_webhook_event

logger = structlog.get_logger(__name__)

STRIPE_API_VERSION = "2025-02-24.acacia"


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except KeyError:
        return default
    except TypeError:
        value = getattr(obj, key, default)
    return default if value is None else value


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _id_of(value: Any) -> str | None:
    """Resolve an id from either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


def _plain(value: Any) -> Any:
    """Unwrap a StripeObject into a plain dict."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _metadata(obj: Any) -> dict[str, str]:
    metadata = _plain(_get(obj, "metadata", {})) or {}
    return {str(k): str(v) for k, v in dict(metadata).items()}


def convert_customer(stripe_customer: Any) -> Customer:
    """Convert Stripe customer object to Customer model."""
    return Customer(
        id=_get(stripe_customer, "id"),
        email=_get(stripe_customer, "email", ""),
        name=_get(stripe_customer, "name"),
        metadata=_metadata(stripe_customer),
        created_at=_from_epoch(_get(stripe_customer, "created")),
    )


def convert_subscription(stripe_sub: Any) -> Subscription:
    """Convert Stripe subscription object to Subscription model."""
    item_objects = list(_get(_get(stripe_sub, "items"), "data", []) or [])
    items = tuple(
        SubscriptionItem(
            id=_get(item, "id"),
            price_id=_get(_get(item, "price"), "id", ""),
            quantity=_get(item, "quantity", 1),
        )
        for item in item_objects
    )

    # Newer API versions report billing periods on the items only.
    first_item = item_objects[0] if item_objects else None
    period_start = _get(stripe_sub, "current_period_start") or _get(
        first_item, "current_period_start"
    )
    period_end = _get(stripe_sub, "current_period_end") or _get(
        first_item, "current_period_end"
    )
    created = _get(stripe_sub, "created")
    period_start = period_start or created
    period_end = period_end or period_start

    return Subscription(
        id=_get(stripe_sub, "id"),
        customer_id=_id_of(_get(stripe_sub, "customer")) or "",
        status=SubscriptionStatus(_get(stripe_sub, "status")),
        current_period_start=_from_epoch(period_start),
        current_period_end=_from_epoch(period_end),
        cancel_at_period_end=bool(_get(stripe_sub, "cancel_at_period_end", False)),
        items=items,
        metadata=_metadata(stripe_sub),
        created_at=_from_epoch(_get(stripe_sub, "created")),
    )


def convert_checkout_session(stripe_session: Any) -> CheckoutSession:
    """Convert Stripe checkout session to CheckoutSession model."""
    return CheckoutSession(
        id=_get(stripe_session, "id"),
        url=_get(stripe_session, "url", ""),
        status=_get(stripe_session, "status", "open"),
        customer_id=_id_of(_get(stripe_session, "customer")),
        metadata=_metadata(stripe_session),
        created_at=_from_epoch(_get(stripe_session, "created")),
    )


class StripeProvider(PaymentProvider):
    """Stripe implementation of PaymentProvider."""

    name = "stripe"

    def __init__(self, config: StripeConfig, client: stripe.StripeClient | None = None):
        """Initialize the Stripe provider.

        Args:
            config: StripeConfig instance with API credentials
            client: Pre-built StripeClient, mainly for tests
        """
        self.config = config
        self._stripe = client if client is not None else stripe.StripeClient(
            config.api_key,
            stripe_version=STRIPE_API_VERSION,
            max_network_retries=config.max_retries,
        )

        logger.info(
            "stripe_provider_initialized",
            is_test_mode=config.is_test_mode,
        )

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking Stripe SDK call in an executor, bounded by the configured timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, lambda: func(*args, **kwargs)),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("stripe_call_timeout", operation=operation, timeout=self.config.timeout)
            raise UpstreamOperationError(
                f"Stripe {operation} timed out after {self.config.timeout}s",
                code=ErrorCode.UPSTREAM_TIMEOUT,
                details={"operation": operation},
                original_error=e,
            )

    def _wrap_error(
        self,
        error: stripe.StripeError,
        operation: str,
        details: dict[str, Any],
        not_found_code: ErrorCode | None = None,
    ) -> BillingError:
        """Map a Stripe SDK error onto this package's error hierarchy."""
        if (
            not_found_code is not None
            and isinstance(error, stripe.InvalidRequestError)
            and getattr(error, "code", None) == "resource_missing"
        ):
            return NotFoundError(
                f"Stripe {operation} failed: resource not found",
                code=not_found_code,
                details=details,
                original_error=error,
            )

        code = (
            ErrorCode.RATE_LIMITED
            if isinstance(error, stripe.RateLimitError)
            else ErrorCode.PAYMENT_FAILED
        )
        return UpstreamOperationError(
            f"Stripe {operation} failed: {error.user_message or str(error)}",
            code=code,
            details={**details, "http_status": getattr(error, "http_status", None)},
            original_error=error,
        )

    # Webhook operations

    def verify_webhook_signature(
        self, payload: bytes | str, signature: str, secret: str
    ) -> WebhookEvent:
        """Verify webhook signature and parse event."""
        logger.debug("verifying_webhook_signature")
        return construct_webhook_event(payload, signature, secret)

    # Retrieval

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """Get the current state of a checkout session."""
        try:
            logger.debug("fetching_checkout_session", session_id=session_id)

            stripe_session = await self._call(
                "checkout_session_retrieve",
                self._stripe.checkout.sessions.retrieve,
                session_id,
                params={"expand": ["customer", "subscription"]},
            )
            return convert_checkout_session(stripe_session)

        except stripe.StripeError as e:
            logger.error("checkout_session_fetch_failed", session_id=session_id, error=str(e))
            raise self._wrap_error(
                e,
                "checkout session retrieve",
                {"session_id": session_id},
                not_found_code=ErrorCode.CHECKOUT_SESSION_NOT_FOUND,
            )

    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        """Get the current state of a subscription."""
        try:
            logger.debug("fetching_subscription", subscription_id=subscription_id)

            stripe_sub = await self._call(
                "subscription_retrieve",
                self._stripe.subscriptions.retrieve,
                subscription_id,
                params={"expand": ["customer"]},
            )
            return convert_subscription(stripe_sub)

        except stripe.StripeError as e:
            logger.error(
                "subscription_fetch_failed", subscription_id=subscription_id, error=str(e)
            )
            raise self._wrap_error(
                e,
                "subscription retrieve",
                {"subscription_id": subscription_id},
                not_found_code=ErrorCode.SUBSCRIPTION_NOT_FOUND,
            )

    async def retrieve_customer(self, customer_id: str) -> Customer:
        """Get the current state of a customer."""
        try:
            logger.debug("fetching_stripe_customer", customer_id=customer_id)

            stripe_customer = await self._call(
                "customer_retrieve",
                self._stripe.customers.retrieve,
                customer_id,
            )

        except stripe.StripeError as e:
            logger.error("stripe_customer_fetch_failed", customer_id=customer_id, error=str(e))
            raise self._wrap_error(
                e,
                "customer retrieve",
                {"customer_id": customer_id},
                not_found_code=ErrorCode.CUSTOMER_NOT_FOUND,
            )

        if _get(stripe_customer, "deleted", False):
            logger.warning("stripe_customer_deleted", customer_id=customer_id)
            raise NotFoundError(
                f"Customer {customer_id} has been deleted",
                code=ErrorCode.CUSTOMER_NOT_FOUND,
                details={"customer_id": customer_id},
            )

        return convert_customer(stripe_customer)

    # Creation

    async def create_customer(self, data: CustomerData) -> Customer:
        """Create a new Stripe customer."""
        try:
            logger.info("creating_stripe_customer", email=data.email)

            params: dict[str, Any] = {
                "email": data.email,
                "metadata": dict(data.metadata),
            }
            if data.name:
                params["name"] = data.name

            stripe_customer = await self._call(
                "customer_create", self._stripe.customers.create, params=params
            )

            customer = convert_customer(stripe_customer)
            logger.info("stripe_customer_created", customer_id=customer.id)
            return customer

        except stripe.StripeError as e:
            logger.error("stripe_customer_create_failed", email=data.email, error=str(e))
            raise self._wrap_error(e, "customer create", {"email": data.email})

    async def create_checkout_session(self, options: CheckoutOptions) -> CheckoutSession:
        """Create a Stripe Checkout session."""
        try:
            logger.info(
                "creating_checkout_session",
                price_id=options.price_id,
                customer_id=options.customer_id,
                mode=options.mode,
            )

            params: dict[str, Any] = {
                "mode": options.mode,
                "line_items": [{"price": options.price_id, "quantity": options.quantity}],
                "success_url": options.success_url,
                "cancel_url": options.cancel_url,
                "metadata": dict(options.metadata),
            }

            if options.customer_id:
                params["customer"] = options.customer_id
            elif options.customer_email:
                params["customer_email"] = options.customer_email

            if options.mode == "subscription":
                subscription_data: dict[str, Any] = {"metadata": dict(options.metadata)}
                if options.trial_days:
                    subscription_data["trial_period_days"] = options.trial_days
                params["subscription_data"] = subscription_data

            stripe_session = await self._call(
                "checkout_session_create",
                self._stripe.checkout.sessions.create,
                params=params,
            )

            session = convert_checkout_session(stripe_session)
            logger.info("checkout_session_created", session_id=session.id)
            return session

        except stripe.StripeError as e:
            logger.error(
                "checkout_session_create_failed", price_id=options.price_id, error=str(e)
            )
            raise self._wrap_error(
                e, "checkout session create", {"price_id": options.price_id}
            )

    async def create_subscription(self, options: SubscriptionOptions) -> Subscription:
        """Create a subscription directly (without checkout session)."""
        try:
            logger.info(
                "creating_subscription",
                customer_id=options.customer_id,
                price_id=options.price_id,
            )

            params: dict[str, Any] = {
                "customer": options.customer_id,
                "items": [{"price": options.price_id, "quantity": options.quantity}],
                "metadata": dict(options.metadata),
            }
            if options.trial_days:
                params["trial_period_days"] = options.trial_days

            stripe_sub = await self._call(
                "subscription_create", self._stripe.subscriptions.create, params=params
            )

            subscription = convert_subscription(stripe_sub)
            logger.info(
                "subscription_created",
                subscription_id=subscription.id,
                customer_id=options.customer_id,
            )
            return subscription

        except stripe.StripeError as e:
            logger.error(
                "subscription_create_failed",
                customer_id=options.customer_id,
                price_id=options.price_id,
                error=str(e),
            )
            raise self._wrap_error(
                e,
                "subscription create",
                {"customer_id": options.customer_id, "price_id": options.price_id},
            )

    # Billing portal

    async def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> PortalSession:
        """Create a billing portal session."""
        try:
            logger.info("creating_billing_portal_session", customer_id=customer_id)

            session = await self._call(
                "billing_portal_create",
                self._stripe.billing_portal.sessions.create,
                params={"customer": customer_id, "return_url": return_url},
            )

            logger.info("billing_portal_session_created", customer_id=customer_id)
            return PortalSession(url=_get(session, "url"))

        except stripe.StripeError as e:
            logger.error(
                "billing_portal_create_failed", customer_id=customer_id, error=str(e)
            )
            raise self._wrap_error(
                e, "billing portal session create", {"customer_id": customer_id}
            )
