"""
Billing service.

Client-initiated billing operations over a PaymentProvider and the KV cache:
customer-first checkout, customer and subscription creation, portal sessions,
and cache-backed subscription lookups.
"""

import asyncio
from typing import Any
from urllib.parse import urlparse

import structlog

from .cache import (
    CANCELED_SUBSCRIPTION_TTL,
    CHECKOUT_TTL,
    CUSTOMER_TTL,
    SUBSCRIPTION_TTL,
    KVStore,
    checkout_key,
    customer_by_email_key,
    customer_by_user_key,
    customer_key,
    subscription_by_customer_key,
    subscription_key,
)
from .exceptions import (
    BillingError,
    ErrorCode,
    NotFoundError,
    UpstreamOperationError,
    ValidationError,
)
from .models import (
    USER_ID_METADATA_KEY,
    CheckoutOptions,
    CheckoutSession,
    Customer,
    CustomerData,
    PortalSession,
    Subscription,
    SubscriptionOptions,
)
from .providers import PaymentProvider

logger = structlog.get_logger(__name__)


def _as_customer(value: Any) -> Customer | None:
    if value is None or isinstance(value, Customer):
        return value
    if isinstance(value, dict):
        return Customer.from_dict(value)
    return None


def _as_subscription(value: Any) -> Subscription | None:
    if value is None or isinstance(value, Subscription):
        return value
    if isinstance(value, dict):
        return Subscription.from_dict(value)
    return None


def _is_absolute_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class BillingService:
    """
    Service for client-initiated billing operations.

    Every customer is created at most once per user id: the user id to
    customer id mapping lives in the cache and is consulted before any
    customer is created upstream.
    """

    def __init__(self, provider: PaymentProvider, cache: KVStore):
        """
        Initialize billing service.

        Args:
            provider: Upstream payment provider
            cache: KV store holding customer mappings and entity snapshots
        """
        self.provider = provider
        self.cache = cache

    # Checkout

    async def create_checkout(self, options: CheckoutOptions) -> CheckoutSession:
        """
        Create a checkout session for a user, creating their customer first if needed.

        Args:
            options: Checkout options; user_id (or metadata["userId"]) and
                customer_email are required

        Returns:
            The created checkout session

        Raises:
            ValidationError: If the user id or email is missing
            BillingError: If an upstream or cache call fails
        """
        user_id = options.user_id or options.metadata.get(USER_ID_METADATA_KEY)
        if not user_id:
            raise ValidationError("userId is required in metadata for checkout")
        if not options.customer_email:
            raise ValidationError("customerEmail is required for checkout")

        metadata = {**options.metadata, USER_ID_METADATA_KEY: user_id}

        try:
            customer_id = await self.cache.get(customer_by_user_key(user_id))

            if not customer_id:
                customer = await self.provider.create_customer(
                    CustomerData(email=options.customer_email, metadata=metadata)
                )
                customer_id = customer.id

                # Permanent mapping; written in full even if the caller goes away.
                await asyncio.shield(
                    self._write_customer_mapping(user_id, options.customer_email, customer_id)
                )
                logger.info(
                    "checkout_customer_created",
                    user_id=user_id,
                    customer_id=customer_id,
                )
            else:
                logger.debug("checkout_customer_reused", user_id=user_id, customer_id=customer_id)

            session = await self.provider.create_checkout_session(
                CheckoutOptions(
                    price_id=options.price_id,
                    success_url=options.success_url,
                    cancel_url=options.cancel_url,
                    customer_email=options.customer_email,
                    customer_id=customer_id,
                    user_id=user_id,
                    metadata=metadata,
                    mode=options.mode,
                    quantity=options.quantity,
                    trial_days=options.trial_days,
                )
            )

            await asyncio.shield(
                self.cache.set(checkout_key(session.id), session, CHECKOUT_TTL)
            )

            logger.info(
                "checkout_created",
                session_id=session.id,
                customer_id=customer_id,
                user_id=user_id,
            )
            return session

        except BillingError:
            raise
        except Exception as e:
            logger.error("checkout_create_failed", user_id=user_id, error=str(e))
            raise UpstreamOperationError(
                f"Checkout creation failed: {e}",
                code=ErrorCode.PAYMENT_FAILED,
                original_error=e,
            )

    async def _write_customer_mapping(self, user_id: str, email: str, customer_id: str) -> None:
        await self.cache.set(customer_by_user_key(user_id), customer_id)
        await self.cache.set(customer_by_email_key(email), customer_id)

    # Customers

    async def create_customer(self, data: CustomerData) -> Customer:
        """Return the cached customer for this email or user, or create one."""
        if not data.email:
            raise ValidationError("email is required to create a customer")

        cached = await self._cached_customer(customer_by_email_key(data.email))
        if cached is not None:
            logger.debug("customer_cache_hit", customer_id=cached.id, lookup="email")
            return cached

        user_id = data.metadata.get(USER_ID_METADATA_KEY)
        if user_id:
            cached = await self._cached_customer(customer_by_user_key(user_id))
            if cached is not None:
                logger.debug("customer_cache_hit", customer_id=cached.id, lookup="user_id")
                return cached

        customer = await self.provider.create_customer(data)
        await asyncio.shield(self._cache_customer(customer))
        return customer

    async def _cached_customer(self, index_key: str) -> Customer | None:
        # Index keys hold either a customer snapshot or a bare customer id.
        value = await self.cache.get(index_key)
        if isinstance(value, str):
            value = await self.cache.get(customer_key(value))
        return _as_customer(value)

    async def _cache_customer(self, customer: Customer) -> None:
        await self.cache.set(customer_key(customer.id), customer, CUSTOMER_TTL)
        if customer.email:
            await self.cache.set(customer_by_email_key(customer.email), customer, CUSTOMER_TTL)
        if customer.user_id:
            await self.cache.set(customer_by_user_key(customer.user_id), customer.id, CUSTOMER_TTL)

    async def resolve_customer_id(self, user_id: str) -> str:
        """
        Map a user id to its customer id.

        Raises:
            NotFoundError: If no customer is known for the user
        """
        customer_id = await self.cache.get(customer_by_user_key(user_id))
        if not customer_id:
            raise NotFoundError(
                "Customer not found for userId",
                code=ErrorCode.CUSTOMER_NOT_FOUND,
                details={"user_id": user_id},
            )
        return customer_id

    # Subscriptions

    async def create_subscription(self, options: SubscriptionOptions) -> Subscription:
        """Create a subscription directly and cache it."""
        if not options.customer_id or not options.price_id:
            raise ValidationError("customer_id and price_id are required")

        subscription = await self.provider.create_subscription(options)
        await asyncio.shield(self._cache_subscription(subscription))
        return subscription

    async def get_subscription(
        self,
        customer_id: str | None = None,
        user_id: str | None = None,
    ) -> Subscription | None:
        """
        Read the cached subscription for a customer or user.

        Returns:
            The cached subscription, or None if nothing is cached

        Raises:
            ValidationError: If neither id is given
        """
        if not customer_id and not user_id:
            raise ValidationError("customerId or userId is required")

        if not customer_id:
            customer_id = await self.cache.get(customer_by_user_key(user_id))
            if not customer_id:
                return None

        subscription_id = await self.cache.get(subscription_by_customer_key(customer_id))
        if not subscription_id:
            return None

        return _as_subscription(await self.cache.get(subscription_key(subscription_id)))

    async def refresh_subscription(
        self,
        customer_id: str | None = None,
        user_id: str | None = None,
    ) -> Subscription:
        """
        Re-fetch the customer's subscription upstream and rewrite the cache.

        Raises:
            ValidationError: If neither id is given
            NotFoundError: If the customer or subscription is unknown
        """
        if not customer_id and not user_id:
            raise ValidationError("customerId or userId is required")

        if not customer_id:
            customer_id = await self.resolve_customer_id(user_id)

        subscription_id = await self.cache.get(subscription_by_customer_key(customer_id))
        if not subscription_id:
            raise NotFoundError(
                "No subscription found",
                code=ErrorCode.SUBSCRIPTION_NOT_FOUND,
                details={"customer_id": customer_id},
            )

        subscription = await self.provider.retrieve_subscription(subscription_id)
        await asyncio.shield(self._cache_subscription(subscription))

        logger.info(
            "subscription_refreshed",
            subscription_id=subscription.id,
            customer_id=customer_id,
            status=subscription.status.value,
        )
        return subscription

    async def _cache_subscription(self, subscription: Subscription) -> None:
        ttl = CANCELED_SUBSCRIPTION_TTL if subscription.is_canceled else SUBSCRIPTION_TTL
        await self.cache.set(subscription_key(subscription.id), subscription, ttl)
        await self.cache.set(
            subscription_by_customer_key(subscription.customer_id),
            subscription.id,
            ttl,
        )

    # Billing portal

    async def create_portal_session(self, customer_id: str, return_url: str) -> PortalSession:
        """Create a billing portal session. The result is never cached."""
        if not customer_id:
            raise ValidationError("customerId is required")
        if not return_url:
            raise ValidationError("returnUrl is required")
        if not _is_absolute_http_url(return_url):
            raise ValidationError("returnUrl must be an absolute http(s) URL")

        return await self.provider.create_portal_session(customer_id, return_url)
