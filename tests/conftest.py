"""Shared test fixtures."""

import os

import pytest
import structlog

from stripe_sync import StripeConfig
from stripe_sync.cache import MemoryKVStore
from stripe_sync.mock import MockPaymentProvider, build_event_payload, sign_payload
from stripe_sync.webhooks import WebhookPipeline

WEBHOOK_SECRET = "whsec_test123456789"


def pytest_configure(config):
    config.addinivalue_line("markers", "e2e: tests against the live Stripe test API")


@pytest.fixture(autouse=True)
def configure_structlog():
    """Configure structlog for testing."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store(clock: FakeClock) -> MemoryKVStore:
    """Memory store driven by the fake clock. The sweeper is not started."""
    return MemoryKVStore(clock=clock)


@pytest.fixture
def mock_provider() -> MockPaymentProvider:
    """Create a mock payment provider for unit tests."""
    return MockPaymentProvider()


@pytest.fixture
def webhook_secret() -> str:
    return WEBHOOK_SECRET


@pytest.fixture
def test_config() -> StripeConfig:
    """Create a test config with fake API key."""
    return StripeConfig(
        api_key="sk_test_fake123456789",
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def pipeline(mock_provider: MockPaymentProvider, memory_store: MemoryKVStore) -> WebhookPipeline:
    return WebhookPipeline(
        provider=mock_provider,
        cache=memory_store,
        webhook_secret=WEBHOOK_SECRET,
    )


@pytest.fixture
def signed_request():
    """Build a (body, headers) pair signed with the test webhook secret."""

    def _build(event_type: str, data_object: dict, event_id: str | None = None):
        body = build_event_payload(event_type, data_object, event_id=event_id)
        headers = {"stripe-signature": sign_payload(body, WEBHOOK_SECRET)}
        return body, headers

    return _build


@pytest.fixture
def live_config() -> StripeConfig | None:
    """Create a config for E2E tests with real Stripe.

    Returns None if STRIPE_TEST_API_KEY is not set.
    """
    api_key = os.environ.get("STRIPE_TEST_API_KEY")
    if not api_key:
        return None

    return StripeConfig(
        api_key=api_key,
        webhook_secret=os.environ.get("STRIPE_TEST_WEBHOOK_SECRET"),
    )


@pytest.fixture
def test_price_id() -> str | None:
    """Get a test price ID for checkout tests.

    Returns None if STRIPE_TEST_PRICE_ID is not set.
    """
    return os.environ.get("STRIPE_TEST_PRICE_ID")
