"""Key-value cache stores and the cache key namespace."""

from .base import KVStore
from .keys import (
    CANCELED_SUBSCRIPTION_TTL,
    CHECKOUT_TTL,
    CUSTOMER_TTL,
    SUBSCRIPTION_TTL,
    checkout_key,
    customer_by_email_key,
    customer_by_user_key,
    customer_key,
    subscription_by_customer_key,
    subscription_key,
)
from .memory import MemoryKVStore
from .redis_store import RedisKVStore

__all__ = [
    "KVStore",
    "MemoryKVStore",
    "RedisKVStore",
    "CHECKOUT_TTL",
    "SUBSCRIPTION_TTL",
    "CANCELED_SUBSCRIPTION_TTL",
    "CUSTOMER_TTL",
    "checkout_key",
    "subscription_key",
    "subscription_by_customer_key",
    "customer_key",
    "customer_by_email_key",
    "customer_by_user_key",
]
