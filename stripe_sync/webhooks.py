"""
Webhook ingestion and cache synchronization pipeline.

Processing order for every inbound request:

1. Reject anything but POST (405)
2. Verify the stripe-signature header (401 when missing or invalid)
3. Classify the event type
4. Re-fetch the entity from the provider; the event payload only supplies its id
5. Write the fresh entity through to the cache
6. Call the sync adapter, then the user handlers
7. Acknowledge with 200 {"received": true}

Only steps 1 and 2 can produce a non-success response. Anything failing after
verification is logged and acknowledged.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Mapping

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
from .config import validate_webhook_secret
from .events import EventKind, classify_event, extract_object_id
from .exceptions import (
    ErrorCode,
    SignatureError,
    WebhookProcessingError,
)
from .models import CheckoutSession, Customer, Subscription, WebhookEvent
from .providers import PaymentProvider

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "stripe-signature"

CustomerCallback = Callable[[Customer], Awaitable[None]]
SubscriptionCallback = Callable[[Subscription], Awaitable[None]]
CheckoutCallback = Callable[[CheckoutSession], Awaitable[None]]


@dataclass
class SyncAdapter:
    """Callbacks for mirroring fresh entities into the caller's own database.

    Called after the cache update and before the user handlers.
    """

    on_customer_created: CustomerCallback | None = None
    on_subscription_updated: SubscriptionCallback | None = None
    on_subscription_canceled: SubscriptionCallback | None = None


@dataclass
class WebhookHandlers:
    """Caller business logic run after the sync adapter."""

    on_checkout_complete: CheckoutCallback | None = None
    on_subscription_created: SubscriptionCallback | None = None
    on_subscription_updated: SubscriptionCallback | None = None
    on_subscription_canceled: SubscriptionCallback | None = None


@dataclass(frozen=True)
class WebhookResponse:
    """Status and JSON body to return to the webhook source."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def acknowledged(cls) -> "WebhookResponse":
        return cls(status_code=200, body={"received": True})


def _get_header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is not None:
        return value
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


class WebhookPipeline:
    """Verify, re-fetch, cache and notify for inbound webhook events."""

    def __init__(
        self,
        provider: PaymentProvider,
        cache: KVStore,
        webhook_secret: str | None,
        sync: SyncAdapter | None = None,
        handlers: WebhookHandlers | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            provider: Upstream payment provider
            cache: KV store receiving fresh snapshots
            webhook_secret: Webhook signing secret (whsec_*)
            sync: Optional sync adapter callbacks
            handlers: Optional user handler callbacks

        Raises:
            ConfigurationError: If the webhook secret is missing or malformed
        """
        self.provider = provider
        self.cache = cache
        self.webhook_secret = validate_webhook_secret(webhook_secret)
        self.sync = sync
        self.handlers = handlers

    async def handle(
        self,
        method: str,
        body: bytes | str,
        headers: Mapping[str, str],
    ) -> WebhookResponse:
        """Process one inbound webhook request."""
        if method.upper() != "POST":
            return WebhookResponse(
                status_code=405,
                body={
                    "error": ErrorCode.METHOD_NOT_ALLOWED.value,
                    "message": "Method not allowed",
                },
            )

        signature = _get_header(headers, SIGNATURE_HEADER)
        if not signature:
            logger.warning("webhook_missing_signature")
            return WebhookResponse(
                status_code=401,
                body={
                    "error": ErrorCode.WEBHOOK_SIGNATURE_MISSING.value,
                    "message": "stripe-signature header is required",
                },
            )

        try:
            event = self.provider.verify_webhook_signature(
                body, signature, self.webhook_secret
            )
        except SignatureError as e:
            logger.error("webhook_verification_failed", error=e.message)
            return WebhookResponse(status_code=401, body=e.to_dict())
        except Exception as e:
            logger.error(
                "webhook_verification_error", error=str(e), error_type=type(e).__name__
            )
            return WebhookResponse(
                status_code=401,
                body={
                    "error": ErrorCode.WEBHOOK_SIGNATURE_INVALID.value,
                    "message": "Webhook verification failed",
                },
            )

        try:
            await self.process_event(event)
        except WebhookProcessingError as e:
            logger.error(
                "webhook_processing_failed",
                event_id=event.id,
                event_type=event.type,
                stage=e.stage,
                error=str(e.original_error),
                error_type=type(e.original_error).__name__,
            )
        except Exception as e:
            logger.exception(
                "webhook_processing_failed",
                event_id=event.id,
                event_type=event.type,
                stage="unknown",
                error=str(e),
            )

        return WebhookResponse.acknowledged()

    async def process_event(self, event: WebhookEvent) -> EventKind:
        """Run classification, re-fetch, cache update and notification.

        Sync adapter and handler failures are logged here and never raised.

        Raises:
            WebhookProcessingError: If extracting the id, re-fetching or
                writing the cache fails
        """
        kind = classify_event(event.type)

        logger.info(
            "webhook_event_received",
            event_id=event.id,
            event_type=event.type,
            kind=kind.value,
        )

        if kind == EventKind.CHECKOUT_COMPLETED:
            await self._on_checkout_completed(event)
        elif kind in (EventKind.SUBSCRIPTION_CREATED, EventKind.SUBSCRIPTION_UPDATED):
            await self._on_subscription_changed(event, kind)
        elif kind == EventKind.SUBSCRIPTION_CANCELED:
            await self._on_subscription_canceled(event)
        else:
            logger.info("webhook_event_unhandled", event_id=event.id, event_type=event.type)

        return kind

    @contextmanager
    def _stage(self, name: str, event: WebhookEvent) -> Iterator[None]:
        try:
            yield
        except WebhookProcessingError:
            raise
        except Exception as e:
            raise WebhookProcessingError(name, event.id, event.type, e) from e

    # Event kinds

    async def _on_checkout_completed(self, event: WebhookEvent) -> None:
        with self._stage("extract", event):
            session_id = extract_object_id(event)

        with self._stage("refetch", event):
            session = await self.provider.retrieve_checkout_session(session_id)

        with self._stage("cache_write", event):
            await self.cache.set(checkout_key(session.id), session, CHECKOUT_TTL)

        customer = None
        if session.customer_id:
            with self._stage("refetch", event):
                customer = await self.provider.retrieve_customer(session.customer_id)

            with self._stage("cache_write", event):
                await self._cache_customer(customer)

        if customer is not None:
            await self._notify_sync("on_customer_created", customer, event)

        await self._notify_handler("on_checkout_complete", session, event)

    async def _on_subscription_changed(self, event: WebhookEvent, kind: EventKind) -> None:
        with self._stage("extract", event):
            subscription_id = extract_object_id(event)

        with self._stage("refetch", event):
            subscription = await self.provider.retrieve_subscription(subscription_id)

        with self._stage("cache_write", event):
            await self.cache.set(
                subscription_key(subscription.id), subscription, SUBSCRIPTION_TTL
            )
            await self.cache.set(
                subscription_by_customer_key(subscription.customer_id),
                subscription.id,
                SUBSCRIPTION_TTL,
            )

        await self._notify_sync("on_subscription_updated", subscription, event)

        handler_name = (
            "on_subscription_created"
            if kind == EventKind.SUBSCRIPTION_CREATED
            else "on_subscription_updated"
        )
        await self._notify_handler(handler_name, subscription, event)

    async def _on_subscription_canceled(self, event: WebhookEvent) -> None:
        with self._stage("extract", event):
            subscription_id = extract_object_id(event)

        with self._stage("refetch", event):
            subscription = await self.provider.retrieve_subscription(subscription_id)

        with self._stage("cache_write", event):
            await self.cache.set(
                subscription_key(subscription.id),
                subscription,
                CANCELED_SUBSCRIPTION_TTL,
            )

        await self._notify_sync("on_subscription_canceled", subscription, event)
        await self._notify_handler("on_subscription_canceled", subscription, event)

    async def _cache_customer(self, customer: Customer) -> None:
        await self.cache.set(customer_key(customer.id), customer, CUSTOMER_TTL)

        if customer.email:
            await self.cache.set(customer_by_email_key(customer.email), customer, CUSTOMER_TTL)

        if customer.user_id:
            await self.cache.set(
                customer_by_user_key(customer.user_id), customer.id, CUSTOMER_TTL
            )

    # Fan-out

    async def _notify_sync(self, name: str, entity: Any, event: WebhookEvent) -> None:
        callback = getattr(self.sync, name, None) if self.sync is not None else None
        await self._invoke("sync", name, callback, entity, event)

    async def _notify_handler(self, name: str, entity: Any, event: WebhookEvent) -> None:
        callback = getattr(self.handlers, name, None) if self.handlers is not None else None
        await self._invoke("handler", name, callback, entity, event)

    async def _invoke(
        self,
        stage: str,
        name: str,
        callback: Callable[[Any], Awaitable[None]] | None,
        entity: Any,
        event: WebhookEvent,
    ) -> None:
        if callback is None:
            return

        try:
            await callback(entity)
        except Exception as e:
            logger.exception(
                "webhook_callback_failed",
                event_id=event.id,
                event_type=event.type,
                stage=stage,
                callback=name,
                error=str(e),
            )
