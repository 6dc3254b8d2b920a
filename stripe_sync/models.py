"""
Billing data models.

Entities are immutable snapshots of provider state. They are never mutated
in place; a fresh fetch produces a new instance that replaces the cached one.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from .exceptions import ValidationError

# Metadata key carrying the caller's own user identifier.
USER_ID_METADATA_KEY = "userId"

CheckoutStatus = Literal["open", "complete", "expired"]
CheckoutMode = Literal["payment", "subscription", "setup"]


class SubscriptionStatus(str, Enum):
    """Standard Stripe subscription statuses."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    UNPAID = "unpaid"
    PAUSED = "paused"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Customer:
    """Billing customer."""

    id: str
    email: str
    name: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def user_id(self) -> str | None:
        return self.metadata.get(USER_ID_METADATA_KEY)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Customer":
        return cls(
            id=data["id"],
            email=data.get("email") or "",
            name=data.get("name"),
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class SubscriptionItem:
    """A single line item of a subscription."""

    id: str
    price_id: str
    quantity: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "price_id": self.price_id, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SubscriptionItem":
        return cls(
            id=data["id"],
            price_id=data["price_id"],
            quantity=data.get("quantity", 1),
        )


@dataclass(frozen=True)
class Subscription:
    """Billing subscription."""

    id: str
    customer_id: str
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    items: tuple[SubscriptionItem, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.current_period_start > self.current_period_end:
            raise ValidationError(
                "current_period_start must not be after current_period_end",
                details={"subscription_id": self.id},
            )

    @property
    def price_id(self) -> str:
        """Price of the first line item, or an empty string."""
        return self.items[0].price_id if self.items else ""

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "status": self.status.value,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "items": [item.to_dict() for item in self.items],
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subscription":
        return cls(
            id=data["id"],
            customer_id=data["customer_id"],
            status=SubscriptionStatus(data["status"]),
            current_period_start=_parse_datetime(data["current_period_start"]),
            current_period_end=_parse_datetime(data["current_period_end"]),
            cancel_at_period_end=bool(data.get("cancel_at_period_end", False)),
            items=tuple(SubscriptionItem.from_dict(i) for i in data.get("items") or ()),
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class CheckoutSession:
    """Checkout session."""

    id: str
    url: str
    status: CheckoutStatus = "open"
    customer_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "status": self.status,
            "customer_id": self.customer_id,
            "metadata": dict(self.metadata),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckoutSession":
        return cls(
            id=data["id"],
            url=data.get("url") or "",
            status=data.get("status") or "open",
            customer_id=data.get("customer_id"),
            metadata=dict(data.get("metadata") or {}),
            created_at=_parse_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class WebhookEvent:
    """Verified webhook event.

    ``data`` is the object embedded in the event envelope. It is only a
    pointer to the entity that must be re-fetched, never its state.
    """

    id: str
    type: str
    data: dict[str, Any]
    created: datetime
    livemode: bool = False


@dataclass(frozen=True)
class PortalSession:
    """Billing portal session. Ephemeral, never cached."""

    url: str


# Request options


@dataclass
class CustomerData:
    """Data required to create a customer."""

    email: str
    name: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class CheckoutOptions:
    """Options for creating a checkout session."""

    price_id: str
    success_url: str
    cancel_url: str
    customer_email: str | None = None
    customer_id: str | None = None
    user_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    mode: CheckoutMode = "subscription"
    quantity: int = 1
    trial_days: int | None = None


@dataclass
class SubscriptionOptions:
    """Options for creating a subscription directly."""

    customer_id: str
    price_id: str
    trial_days: int | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    quantity: int = 1
