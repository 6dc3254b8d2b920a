"""
Webhook event normalization.

Maps raw Stripe event types onto the small set of kinds the pipeline acts
on. Anything not in the table is UNHANDLED, which is not an error.
"""

from enum import Enum

from .exceptions import ValidationError
from .models import WebhookEvent


class EventKind(str, Enum):
    """Normalized webhook event kinds."""

    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    UNHANDLED = "unhandled"


EVENT_TYPE_MAP: dict[str, EventKind] = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    "customer.subscription.created": EventKind.SUBSCRIPTION_CREATED,
    "customer.subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_CANCELED,
    "customer.subscription.canceled": EventKind.SUBSCRIPTION_CANCELED,
}


def classify_event(event_type: str) -> EventKind:
    """Return the normalized kind for a raw event type."""
    return EVENT_TYPE_MAP.get(event_type, EventKind.UNHANDLED)


def extract_object_id(event: WebhookEvent) -> str:
    """Return the id of the entity the event points at.

    Only the id is read from the payload; everything else is re-fetched.
    """
    object_id = event.data.get("id") if isinstance(event.data, dict) else None
    if not isinstance(object_id, str) or not object_id:
        raise ValidationError(
            "Webhook event payload has no object id",
            details={"event_id": event.id, "event_type": event.type},
        )
    return object_id
