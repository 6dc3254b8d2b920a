"""
Billing API Routes.

Webhook ingestion, checkout, billing portal and subscription lookup endpoints.
"""

import json
from typing import Any, TypeVar

import structlog
from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import BillingError, ErrorCode
from ..models import CheckoutMode, CheckoutOptions
from ..service import BillingService
from ..webhooks import WebhookPipeline

logger = structlog.get_logger(__name__)

RequestModel = TypeVar("RequestModel", bound=BaseModel)

WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


# === Request Models ===


class CheckoutRequest(BaseModel):
    """Request to create a checkout session."""

    price_id: str = Field(..., min_length=1, description="Stripe Price ID to charge")
    success_url: str = Field(..., min_length=1, description="URL to redirect after successful payment")
    cancel_url: str = Field(..., min_length=1, description="URL to redirect if payment is cancelled")
    customer_email: str | None = Field(None, description="Customer email, required for new customers")
    user_id: str | None = Field(None, description="Caller's user id")
    metadata: dict[str, str] = Field(default_factory=dict, description="Optional metadata")
    mode: CheckoutMode = Field("subscription", description="payment, subscription or setup")
    quantity: int = Field(1, ge=1)
    trial_days: int | None = Field(None, ge=1, description="Trial period (subscription mode only)")


class PortalRequest(BaseModel):
    """Request for a billing portal URL."""

    customer_id: str = Field(..., description="Stripe customer ID")
    return_url: str = Field(..., description="URL to return to after portal session")


# === Helper Functions ===


def error_response(error: BillingError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def invalid_request(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": ErrorCode.INVALID_REQUEST.value, "message": message},
    )


async def parse_body(request: Request, model: type[RequestModel]) -> RequestModel | JSONResponse:
    """Parse and validate a JSON body, or return a 400 response."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return invalid_request("Request body must be valid JSON")

    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"]) or "body"
        return invalid_request(f"{field_name}: {first['msg']}")


def subscription_payload(subscription: Any) -> dict[str, Any]:
    return {"subscription": subscription.to_dict() if subscription else None}


# === Routes ===


def create_billing_router(pipeline: WebhookPipeline, service: BillingService) -> APIRouter:
    """Build the billing router over a webhook pipeline and billing service."""
    router = APIRouter()

    @router.api_route(
        "/webhook",
        methods=WEBHOOK_METHODS,
        summary="Stripe webhook",
        description="Receive, verify and process Stripe webhook events.",
    )
    async def stripe_webhook(request: Request) -> JSONResponse:
        """Handle Stripe webhook events.

        The raw body is passed through untouched; signature verification
        depends on the exact bytes Stripe signed.
        """
        body = await request.body()
        result = await pipeline.handle(request.method, body, request.headers)
        return JSONResponse(status_code=result.status_code, content=result.body)

    @router.post(
        "/checkout",
        summary="Create checkout session",
        description="Create a Stripe checkout session, creating the customer first if needed.",
    )
    async def create_checkout(request: Request) -> JSONResponse:
        parsed = await parse_body(request, CheckoutRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        logger.info(
            "create_checkout_request",
            price_id=parsed.price_id,
            user_id=parsed.user_id,
            mode=parsed.mode,
        )

        try:
            session = await service.create_checkout(
                CheckoutOptions(
                    price_id=parsed.price_id,
                    success_url=parsed.success_url,
                    cancel_url=parsed.cancel_url,
                    customer_email=parsed.customer_email,
                    user_id=parsed.user_id,
                    metadata=parsed.metadata,
                    mode=parsed.mode,
                    quantity=parsed.quantity,
                    trial_days=parsed.trial_days,
                )
            )
        except BillingError as e:
            logger.warning("create_checkout_failed", code=e.code.value, error=e.message)
            return error_response(e)

        return JSONResponse(content={"url": session.url, "session_id": session.id})

    @router.post(
        "/portal",
        summary="Create billing portal session",
        description="Get a Stripe billing portal URL for subscription management.",
    )
    async def create_portal(request: Request) -> JSONResponse:
        parsed = await parse_body(request, PortalRequest)
        if isinstance(parsed, JSONResponse):
            return parsed

        try:
            portal = await service.create_portal_session(parsed.customer_id, parsed.return_url)
        except BillingError as e:
            logger.warning("create_portal_failed", code=e.code.value, error=e.message)
            return error_response(e)

        return JSONResponse(content={"url": portal.url})

    @router.get(
        "/subscription",
        summary="Get cached subscription",
        description="Read the cached subscription for a customer or user.",
    )
    async def get_subscription(
        customer_id: str | None = Query(None),
        user_id: str | None = Query(None),
    ) -> JSONResponse:
        try:
            subscription = await service.get_subscription(customer_id=customer_id, user_id=user_id)
        except BillingError as e:
            return error_response(e)

        return JSONResponse(content=subscription_payload(subscription))

    @router.post(
        "/subscription/refresh",
        summary="Refresh subscription",
        description="Re-fetch the subscription from Stripe and update the cache.",
    )
    async def refresh_subscription(
        customer_id: str | None = Query(None),
        user_id: str | None = Query(None),
    ) -> JSONResponse:
        try:
            subscription = await service.refresh_subscription(
                customer_id=customer_id, user_id=user_id
            )
        except BillingError as e:
            logger.warning("refresh_subscription_failed", code=e.code.value, error=e.message)
            return error_response(e)

        return JSONResponse(content=subscription_payload(subscription))

    return router
