"""
Webhook signature verification and envelope parsing.

Verification fails closed: anything other than a well-formed, correctly
signed, fresh envelope raises SignatureError.
"""

import json
from datetime import datetime, timezone
from typing import Any

import stripe
import structlog

from ..exceptions import ErrorCode, SignatureError
from ..models import WebhookEvent

logger = structlog.get_logger(__name__)

DEFAULT_TOLERANCE = 300


def parse_event_envelope(payload: str) -> WebhookEvent:
    """Parse a raw event envelope into a WebhookEvent."""
    try:
        envelope = json.loads(payload)
    except ValueError as e:
        raise SignatureError("Invalid webhook payload", original_error=e)

    if not isinstance(envelope, dict):
        raise SignatureError("Invalid webhook payload: envelope must be an object")

    event_id = envelope.get("id")
    event_type = envelope.get("type")
    created = envelope.get("created")
    data = envelope.get("data")

    if not isinstance(event_id, str) or not event_id:
        raise SignatureError("Invalid webhook event: missing or invalid event ID")
    if not isinstance(event_type, str) or not event_type:
        raise SignatureError("Invalid webhook event: missing or invalid event type")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise SignatureError("Invalid webhook event: missing event data")
    if not isinstance(created, (int, float)) or isinstance(created, bool):
        raise SignatureError("Invalid webhook event: invalid created timestamp")

    return WebhookEvent(
        id=event_id,
        type=event_type,
        data=data["object"],
        created=datetime.fromtimestamp(created, tz=timezone.utc),
        livemode=bool(envelope.get("livemode", False)),
    )


def construct_webhook_event(
    payload: bytes | str,
    signature: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE,
) -> WebhookEvent:
    """Verify a signed payload and return the parsed event.

    Args:
        payload: Raw request body, exactly as received
        signature: Value of the stripe-signature header
        secret: Webhook signing secret
        tolerance: Maximum accepted age of the signature timestamp in seconds

    Raises:
        SignatureError: On any verification or parsing failure
    """
    if not secret:
        raise SignatureError(
            "Webhook secret is required for signature verification",
            details={"has_secret": False},
        )

    if not signature:
        raise SignatureError(
            "Missing webhook signature in request headers",
            code=ErrorCode.WEBHOOK_SIGNATURE_MISSING,
        )

    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureError("Invalid webhook payload encoding", original_error=e)

    try:
        stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance)
    except (stripe.SignatureVerificationError, ValueError, IndexError) as e:
        # Malformed headers can surface as ValueError or IndexError from the SDK parser.
        logger.warning("webhook_signature_invalid", error=str(e))
        raise SignatureError(
            f"Webhook signature verification failed: {e}",
            original_error=e,
        )

    event = parse_event_envelope(payload)
    logger.info(
        "webhook_signature_verified",
        event_type=event.type,
        event_id=event.id,
    )
    return event
