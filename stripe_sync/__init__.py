"""
    stripe-sync - Stripe webhook ingestion and billing cache.

    Verifies Stripe webhooks, re-fetches the entities they point at, writes
    fresh snapshots through to a KV cache, and notifies caller callbacks.

Example usage:
    from stripe_sync import (
        MemoryKVStore,
        StripeConfig,
        StripeProvider,
        WebhookHandlers,
        WebhookPipeline,
    )

    provider = StripeProvider(StripeConfig(api_key="sk_test_..."))
    cache = MemoryKVStore()

    async def on_checkout_complete(session):
        ...

    pipeline = WebhookPipeline(
        provider=provider,
        cache=cache,
        webhook_secret="whsec_...",
        handlers=WebhookHandlers(on_checkout_complete=on_checkout_complete),
    )

    response = await pipeline.handle("POST", raw_body, headers)
"""

from .cache import KVStore, MemoryKVStore, RedisKVStore
from .config import Settings, StripeConfig
from .events import EventKind, classify_event
from .exceptions import (
    BillingError,
    CacheStoreError,
    ConfigurationError,
    ErrorCode,
    NotFoundError,
    SignatureError,
    UpstreamOperationError,
    ValidationError,
    WebhookProcessingError,
)
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
from .providers import PaymentProvider, StripeProvider
from .service import BillingService
from .webhooks import SyncAdapter, WebhookHandlers, WebhookPipeline, WebhookResponse

__version__ = "0.1.0"

__all__ = [
    # Cache
    "KVStore",
    "MemoryKVStore",
    "RedisKVStore",
    # Config
    "Settings",
    "StripeConfig",
    # Events
    "EventKind",
    "classify_event",
    # Exceptions
    "BillingError",
    "CacheStoreError",
    "ConfigurationError",
    "ErrorCode",
    "NotFoundError",
    "SignatureError",
    "UpstreamOperationError",
    "ValidationError",
    "WebhookProcessingError",
    # Models
    "CheckoutOptions",
    "CheckoutSession",
    "Customer",
    "CustomerData",
    "PortalSession",
    "Subscription",
    "SubscriptionItem",
    "SubscriptionOptions",
    "SubscriptionStatus",
    "WebhookEvent",
    # Providers
    "PaymentProvider",
    "StripeProvider",
    # Pipeline and service
    "BillingService",
    "SyncAdapter",
    "WebhookHandlers",
    "WebhookPipeline",
    "WebhookResponse",
    # Version
    "__version__",
]
