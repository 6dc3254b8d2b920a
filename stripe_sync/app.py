"""FastAPI application factory for the billing service."""

from fastapi import FastAPI
import structlog
import uvicorn

from .api import create_billing_router
from .cache import KVStore, MemoryKVStore, RedisKVStore
from .config import Settings
from .logging_config import configure_logging
from .providers import PaymentProvider, StripeProvider
from .service import BillingService
from .webhooks import SyncAdapter, WebhookHandlers, WebhookPipeline

logger = structlog.get_logger(__name__)


def build_cache(settings: Settings) -> KVStore:
    """Create the KV store selected by CACHE_BACKEND."""
    if settings.CACHE_BACKEND == "redis":
        return RedisKVStore.from_url(settings.REDIS_URL)
    return MemoryKVStore(sweep_interval=settings.CACHE_SWEEP_INTERVAL)


def create_app(
    settings: Settings | None = None,
    *,
    provider: PaymentProvider | None = None,
    cache: KVStore | None = None,
    sync: SyncAdapter | None = None,
    handlers: WebhookHandlers | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Environment settings, loaded from the environment if omitted
        provider: Payment provider, a StripeProvider built from settings if omitted
        cache: KV store, built from CACHE_BACKEND if omitted
        sync: Optional sync adapter callbacks
        handlers: Optional webhook handler callbacks

    Raises:
        ConfigurationError: If Stripe credentials or the webhook secret are invalid
    """
    settings = settings if settings is not None else Settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    if provider is None:
        provider = StripeProvider(settings.stripe_config())
    if cache is None:
        cache = build_cache(settings)

    pipeline = WebhookPipeline(
        provider=provider,
        cache=cache,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        sync=sync,
        handlers=handlers,
    )
    service = BillingService(provider=provider, cache=cache)

    app = FastAPI(
        title="Stripe Sync",
        description="Stripe webhook ingestion and billing cache service",
        version="0.1.0",
    )
    app.state.cache = cache
    app.state.pipeline = pipeline
    app.state.service = service

    app.include_router(
        create_billing_router(pipeline, service),
        prefix="/api/stripe",
        tags=["billing"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "stripe-sync", "provider": provider.name}

    @app.on_event("startup")
    async def startup_event():
        """Startup event handler"""
        logger.info("stripe_sync_starting", cache_backend=type(cache).__name__)
        if isinstance(cache, MemoryKVStore):
            cache.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        """Shutdown event handler"""
        logger.info("stripe_sync_shutting_down")
        await cache.close()

    return app


def main() -> None:
    """Serve the application with uvicorn."""
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT)
