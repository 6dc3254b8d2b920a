"""
Redis-backed key-value store.

Production store for cached billing state. Strings are stored verbatim and
everything else is JSON-encoded; reads decode JSON and fall back to the raw
string when the stored text is not JSON.
"""

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from ..exceptions import CacheStoreError, ConfigurationError
from .base import KVStore, has_expiry

logger = structlog.get_logger(__name__)


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize_value(value: Any) -> str:
    """Encode a value for storage."""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=_json_default)


def deserialize_value(raw: Any) -> Any:
    """Decode a stored value, returning the raw text if it is not JSON."""
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class RedisKVStore(KVStore):
    """KV store over a redis.asyncio client.

    Example:
        store = RedisKVStore.from_url("redis://localhost:6379/0")
        await store.set("customer:userId:user_123", "cus_abc123")
        customer_id = await store.get("customer:userId:user_123")
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        client_factory: Callable[[], redis.Redis] | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            client: Ready-made redis.asyncio client
            client_factory: Zero-argument callable returning a client

        Raises:
            ConfigurationError: If neither a client nor a factory is given,
                or the factory fails
        """
        if client is None and client_factory is None:
            raise ConfigurationError(
                "RedisKVStore requires a redis client or a client factory"
            )

        if client is None:
            try:
                client = client_factory()
            except Exception as e:
                raise ConfigurationError(
                    f"Failed to create redis client: {e}",
                    original_error=e,
                )
            if client is None:
                raise ConfigurationError("Redis client factory returned no client")

        self._client = client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisKVStore":
        """Build a store with a client connected to url."""
        if not url:
            raise ConfigurationError("Missing REDIS_URL for the redis cache backend")
        return cls(client=redis.Redis.from_url(url, decode_responses=True, **kwargs))

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.error("cache_get_failed", key=key, error=str(e))
            raise CacheStoreError("get", key, original_error=e)

        return deserialize_value(raw)

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        serialized = serialize_value(value)

        try:
            if not has_expiry(ttl_seconds):
                await self._client.set(key, serialized)
            elif float(ttl_seconds).is_integer():
                await self._client.set(key, serialized, ex=int(ttl_seconds))
            else:
                await self._client.set(key, serialized, px=max(1, int(ttl_seconds * 1000)))
        except RedisError as e:
            logger.error("cache_set_failed", key=key, error=str(e))
            raise CacheStoreError("set", key, original_error=e)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            logger.error("cache_delete_failed", key=key, error=str(e))
            raise CacheStoreError("delete", key, original_error=e)

    async def close(self) -> None:
        await self._client.aclose()
