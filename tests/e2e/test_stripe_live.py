"""E2E tests for StripeProvider and BillingService with real Stripe API."""

import os
import time

import pytest

from stripe_sync import (
    BillingService,
    CheckoutOptions,
    CustomerData,
    ErrorCode,
    MemoryKVStore,
    NotFoundError,
    StripeConfig,
    StripeProvider,
)


pytestmark = [
    pytest.mark.e2e,
    pytest.mark.skipif(
        not os.getenv("STRIPE_TEST_API_KEY"),
        reason="STRIPE_TEST_API_KEY not set",
    ),
]

requires_price = pytest.mark.skipif(
    not os.getenv("STRIPE_TEST_PRICE_ID"),
    reason="STRIPE_TEST_PRICE_ID not set",
)


@pytest.fixture
def live_provider(live_config: StripeConfig | None) -> StripeProvider | None:
    if not live_config:
        return None
    return StripeProvider(live_config)


class TestStripeProviderE2E:
    """E2E tests for customer and checkout operations."""

    @pytest.mark.asyncio
    async def test_create_and_retrieve_customer(self, live_provider: StripeProvider):
        email = f"test-{int(time.time())}@fluxtopus.com"

        customer = await live_provider.create_customer(
            CustomerData(email=email, name="E2E Test Customer", metadata={"userId": "e2e_user"})
        )

        try:
            fetched = await live_provider.retrieve_customer(customer.id)
            assert fetched.id == customer.id
            assert fetched.email == email
            assert fetched.user_id == "e2e_user"
        finally:
            # Cleanup
            live_provider._stripe.customers.delete(customer.id)

    @pytest.mark.asyncio
    async def test_retrieve_missing_customer(self, live_provider: StripeProvider):
        with pytest.raises(NotFoundError) as exc_info:
            await live_provider.retrieve_customer("cus_nonexistent123456")
        assert exc_info.value.code == ErrorCode.CUSTOMER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_retrieve_missing_checkout_session(self, live_provider: StripeProvider):
        with pytest.raises(NotFoundError) as exc_info:
            await live_provider.retrieve_checkout_session("cs_nonexistent123456")
        assert exc_info.value.code == ErrorCode.CHECKOUT_SESSION_NOT_FOUND

    @requires_price
    @pytest.mark.asyncio
    async def test_customer_first_checkout(self, live_provider: StripeProvider, test_price_id: str):
        user_id = f"e2e-{int(time.time())}"
        service = BillingService(live_provider, MemoryKVStore())

        first = await service.create_checkout(
            CheckoutOptions(
                price_id=test_price_id,
                success_url="https://example.com/success?session_id={CHECKOUT_SESSION_ID}",
                cancel_url="https://example.com/cancel",
                customer_email=f"{user_id}@fluxtopus.com",
                user_id=user_id,
            )
        )
        second = await service.create_checkout(
            CheckoutOptions(
                price_id=test_price_id,
                success_url="https://example.com/success",
                cancel_url="https://example.com/cancel",
                customer_email=f"{user_id}-other@fluxtopus.com",
                user_id=user_id,
            )
        )

        try:
            assert first.id.startswith("cs_")
            assert first.url.startswith("https://checkout.stripe.com")
            assert first.customer_id == second.customer_id
            assert first.metadata["userId"] == user_id

            fetched = await live_provider.retrieve_checkout_session(first.id)
            assert fetched.customer_id == first.customer_id
        finally:
            live_provider._stripe.customers.delete(first.customer_id)
