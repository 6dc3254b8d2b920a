"""Tests for StripeProvider with a mocked StripeClient."""

import threading
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import stripe

from stripe_sync import (
    CheckoutOptions,
    CustomerData,
    ErrorCode,
    NotFoundError,
    SignatureError,
    StripeConfig,
    StripeProvider,
    SubscriptionOptions,
    SubscriptionStatus,
    UpstreamOperationError,
)
from stripe_sync.mock import build_event_payload, sign_payload
from stripe_sync.providers.stripe_provider import (
    convert_checkout_session,
    convert_customer,
    convert_subscription,
)
from stripe_sync.providers.webhooks import construct_webhook_event

JAN_1 = 1704067200
FEB_1 = 1706745600


def stripe_subscription(**overrides):
    data = {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "active",
        "current_period_start": JAN_1,
        "current_period_end": FEB_1,
        "cancel_at_period_end": False,
        "created": JAN_1,
        "metadata": {"userId": "user_1"},
        "items": {
            "data": [{"id": "si_1", "price": {"id": "price_pro"}, "quantity": 2}],
        },
    }
    data.update(overrides)
    return data


@pytest.fixture
def stripe_client():
    return MagicMock()


@pytest.fixture
def provider(test_config, stripe_client):
    return StripeProvider(test_config, client=stripe_client)


class TestConverters:

    def test_convert_customer(self):
        customer = convert_customer(
            {
                "id": "cus_1",
                "email": "a@example.com",
                "name": None,
                "metadata": {"userId": "user_1"},
                "created": JAN_1,
            }
        )
        assert customer.id == "cus_1"
        assert customer.user_id == "user_1"
        assert customer.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_convert_subscription(self):
        subscription = convert_subscription(stripe_subscription())
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.customer_id == "cus_1"
        assert subscription.price_id == "price_pro"
        assert subscription.items[0].quantity == 2
        assert subscription.current_period_end == datetime(2024, 2, 1, tzinfo=timezone.utc)

    def test_convert_subscription_expanded_customer(self):
        subscription = convert_subscription(
            stripe_subscription(customer={"id": "cus_expanded", "email": "x@example.com"})
        )
        assert subscription.customer_id == "cus_expanded"

    def test_convert_subscription_period_from_items(self):
        data = stripe_subscription(current_period_start=None, current_period_end=None)
        data["items"]["data"][0].update(
            {"current_period_start": JAN_1, "current_period_end": FEB_1}
        )
        subscription = convert_subscription(data)
        assert subscription.current_period_start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert subscription.current_period_end == datetime(2024, 2, 1, tzinfo=timezone.utc)

    def test_convert_checkout_session(self):
        session = convert_checkout_session(
            {
                "id": "cs_1",
                "url": None,
                "status": "complete",
                "customer": {"id": "cus_1"},
                "metadata": {"userId": "user_1"},
                "created": JAN_1,
            }
        )
        assert session.customer_id == "cus_1"
        assert session.status == "complete"
        assert session.url == ""


class TestConvertersWithStripeObjects:
    """Converters receive StripeObject instances from the SDK, not dicts."""

    def test_convert_customer(self):
        customer = convert_customer(
            stripe.Customer.construct_from(
                {
                    "id": "cus_1",
                    "object": "customer",
                    "email": "a@example.com",
                    "name": "Ada",
                    "metadata": {"userId": "user_1"},
                    "created": JAN_1,
                },
                "sk_test_123",
            )
        )
        assert customer.id == "cus_1"
        assert customer.name == "Ada"
        assert customer.metadata == {"userId": "user_1"}

    def test_convert_subscription(self):
        data = stripe_subscription(customer={"id": "cus_1", "object": "customer"})
        data["object"] = "subscription"
        data["items"]["object"] = "list"

        subscription = convert_subscription(stripe.Subscription.construct_from(data, "sk_test_123"))

        assert subscription.customer_id == "cus_1"
        assert subscription.price_id == "price_pro"
        assert subscription.items[0].quantity == 2
        assert subscription.metadata == {"userId": "user_1"}
        assert subscription.current_period_end == datetime(2024, 2, 1, tzinfo=timezone.utc)

    def test_convert_checkout_session(self):
        session = convert_checkout_session(
            stripe.checkout.Session.construct_from(
                {
                    "id": "cs_1",
                    "object": "checkout.session",
                    "url": "https://checkout.stripe.com/c/pay/cs_1",
                    "status": "complete",
                    "customer": "cus_1",
                    "metadata": {"userId": "user_1", "plan": "pro"},
                    "created": JAN_1,
                },
                "sk_test_123",
            )
        )
        assert session.customer_id == "cus_1"
        assert session.metadata == {"userId": "user_1", "plan": "pro"}

    def test_empty_metadata(self):
        customer = convert_customer(
            stripe.Customer.construct_from(
                {"id": "cus_1", "object": "customer", "email": "", "metadata": {}, "created": JAN_1},
                "sk_test_123",
            )
        )
        assert customer.metadata == {}
        assert customer.user_id is None


class TestStripeProvider:

    def test_builds_own_client(self, test_config):
        provider = StripeProvider(test_config)
        assert isinstance(provider._stripe, stripe.StripeClient)
        assert provider.name == "stripe"

    @pytest.mark.asyncio
    async def test_retrieve_subscription(self, provider, stripe_client):
        stripe_client.subscriptions.retrieve.return_value = stripe_subscription()

        subscription = await provider.retrieve_subscription("sub_1")

        assert subscription.id == "sub_1"
        stripe_client.subscriptions.retrieve.assert_called_once_with(
            "sub_1", params={"expand": ["customer"]}
        )

    @pytest.mark.asyncio
    async def test_retrieve_checkout_session(self, provider, stripe_client):
        stripe_client.checkout.sessions.retrieve.return_value = {
            "id": "cs_1",
            "url": "https://checkout.stripe.com/c/pay/cs_1",
            "status": "complete",
            "customer": "cus_1",
            "metadata": {},
            "created": JAN_1,
        }

        session = await provider.retrieve_checkout_session("cs_1")

        assert session.customer_id == "cus_1"
        stripe_client.checkout.sessions.retrieve.assert_called_once_with(
            "cs_1", params={"expand": ["customer", "subscription"]}
        )

    @pytest.mark.asyncio
    async def test_retrieve_missing_customer(self, provider, stripe_client):
        stripe_client.customers.retrieve.side_effect = stripe.InvalidRequestError(
            "No such customer: 'cus_x'", "id", code="resource_missing", http_status=404
        )

        with pytest.raises(NotFoundError) as exc_info:
            await provider.retrieve_customer("cus_x")

        assert exc_info.value.code == ErrorCode.CUSTOMER_NOT_FOUND
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_retrieve_deleted_customer(self, provider, stripe_client):
        stripe_client.customers.retrieve.return_value = {"id": "cus_1", "deleted": True}

        with pytest.raises(NotFoundError) as exc_info:
            await provider.retrieve_customer("cus_1")

        assert exc_info.value.code == ErrorCode.CUSTOMER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_retrieve_deleted_customer_object(self, provider, stripe_client):
        stripe_client.customers.retrieve.return_value = stripe.Customer.construct_from(
            {"id": "cus_1", "object": "customer", "deleted": True}, "sk_test_123"
        )

        with pytest.raises(NotFoundError) as exc_info:
            await provider.retrieve_customer("cus_1")

        assert exc_info.value.code == ErrorCode.CUSTOMER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_retrieve_subscription_object(self, provider, stripe_client):
        data = stripe_subscription()
        data["object"] = "subscription"
        stripe_client.subscriptions.retrieve.return_value = stripe.Subscription.construct_from(
            data, "sk_test_123"
        )

        subscription = await provider.retrieve_subscription("sub_1")

        assert subscription.id == "sub_1"
        assert subscription.metadata == {"userId": "user_1"}

    @pytest.mark.asyncio
    async def test_rate_limit_mapped(self, provider, stripe_client):
        stripe_client.subscriptions.retrieve.side_effect = stripe.RateLimitError("Too many requests")

        with pytest.raises(UpstreamOperationError) as exc_info:
            await provider.retrieve_subscription("sub_1")

        assert exc_info.value.code == ErrorCode.RATE_LIMITED
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_generic_error_mapped(self, provider, stripe_client):
        stripe_client.customers.create.side_effect = stripe.APIConnectionError("offline")

        with pytest.raises(UpstreamOperationError) as exc_info:
            await provider.create_customer(CustomerData(email="a@example.com"))

        assert exc_info.value.code == ErrorCode.PAYMENT_FAILED

    @pytest.mark.asyncio
    async def test_timeout(self, stripe_client):
        release = threading.Event()
        stripe_client.subscriptions.retrieve.side_effect = lambda *a, **kw: release.wait(5)
        provider = StripeProvider(
            StripeConfig(api_key="sk_test_123", timeout=0.05), client=stripe_client
        )

        try:
            with pytest.raises(UpstreamOperationError) as exc_info:
                await provider.retrieve_subscription("sub_1")
        finally:
            release.set()

        assert exc_info.value.code == ErrorCode.UPSTREAM_TIMEOUT

    @pytest.mark.asyncio
    async def test_create_customer(self, provider, stripe_client):
        stripe_client.customers.create.return_value = {
            "id": "cus_new",
            "email": "a@example.com",
            "metadata": {"userId": "user_1"},
            "created": JAN_1,
        }

        customer = await provider.create_customer(
            CustomerData(email="a@example.com", name="Ada", metadata={"userId": "user_1"})
        )

        assert customer.id == "cus_new"
        stripe_client.customers.create.assert_called_once_with(
            params={"email": "a@example.com", "metadata": {"userId": "user_1"}, "name": "Ada"}
        )

    @pytest.mark.asyncio
    async def test_create_checkout_session_params(self, provider, stripe_client):
        stripe_client.checkout.sessions.create.return_value = {
            "id": "cs_1",
            "url": "https://checkout.stripe.com/c/pay/cs_1",
            "status": "open",
            "customer": "cus_1",
            "metadata": {"userId": "user_1"},
            "created": JAN_1,
        }

        await provider.create_checkout_session(
            CheckoutOptions(
                price_id="price_pro",
                success_url="https://example.com/success",
                cancel_url="https://example.com/cancel",
                customer_id="cus_1",
                customer_email="a@example.com",
                metadata={"userId": "user_1"},
                trial_days=14,
            )
        )

        params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["customer"] == "cus_1"
        assert "customer_email" not in params
        assert params["line_items"] == [{"price": "price_pro", "quantity": 1}]
        assert params["subscription_data"] == {
            "metadata": {"userId": "user_1"},
            "trial_period_days": 14,
        }

    @pytest.mark.asyncio
    async def test_create_subscription(self, provider, stripe_client):
        stripe_client.subscriptions.create.return_value = stripe_subscription()

        subscription = await provider.create_subscription(
            SubscriptionOptions(customer_id="cus_1", price_id="price_pro")
        )

        assert subscription.id == "sub_1"
        params = stripe_client.subscriptions.create.call_args.kwargs["params"]
        assert params["customer"] == "cus_1"
        assert "trial_period_days" not in params

    @pytest.mark.asyncio
    async def test_create_portal_session(self, provider, stripe_client):
        stripe_client.billing_portal.sessions.create.return_value = {
            "url": "https://billing.stripe.com/p/session/bps_1"
        }

        portal = await provider.create_portal_session("cus_1", "https://example.com/account")

        assert portal.url == "https://billing.stripe.com/p/session/bps_1"


class TestWebhookVerification:

    SECRET = "whsec_test123456789"

    def test_valid_signature(self):
        body = build_event_payload("invoice.paid", {"id": "in_1"}, event_id="evt_1")
        event = construct_webhook_event(body, sign_payload(body, self.SECRET), self.SECRET)

        assert event.id == "evt_1"
        assert event.type == "invoice.paid"
        assert event.data == {"id": "in_1"}

    def test_bytes_payload(self):
        body = build_event_payload("invoice.paid", {"id": "in_1"})
        event = construct_webhook_event(
            body.encode("utf-8"), sign_payload(body, self.SECRET), self.SECRET
        )
        assert event.type == "invoice.paid"

    def test_tampered_body(self):
        body = build_event_payload("invoice.paid", {"id": "in_1"})
        signature = sign_payload(body, self.SECRET)

        with pytest.raises(SignatureError):
            construct_webhook_event(body.replace("in_1", "in_2"), signature, self.SECRET)

    def test_wrong_secret(self):
        body = build_event_payload("invoice.paid", {"id": "in_1"})
        with pytest.raises(SignatureError):
            construct_webhook_event(body, sign_payload(body, "whsec_other"), self.SECRET)

    def test_stale_timestamp(self):
        body = build_event_payload("invoice.paid", {"id": "in_1"})
        signature = sign_payload(body, self.SECRET, timestamp=int(time.time()) - 3600)

        with pytest.raises(SignatureError):
            construct_webhook_event(body, signature, self.SECRET)

    @pytest.mark.parametrize("header", ["garbage", "t=abc,v1=xyz", "v1=deadbeef"])
    def test_malformed_header(self, header):
        body = build_event_payload("invoice.paid", {"id": "in_1"})
        with pytest.raises(SignatureError):
            construct_webhook_event(body, header, self.SECRET)

    def test_missing_signature(self):
        with pytest.raises(SignatureError) as exc_info:
            construct_webhook_event("{}", "", self.SECRET)
        assert exc_info.value.code == ErrorCode.WEBHOOK_SIGNATURE_MISSING

    def test_signed_but_malformed_envelope(self):
        body = '{"id": "evt_1", "type": "invoice.paid"}'
        with pytest.raises(SignatureError):
            construct_webhook_event(body, sign_payload(body, self.SECRET), self.SECRET)
