"""
Key-value store interface.

Stores cache provider state with optional per-key TTL. A TTL that is
omitted, zero or negative makes the entry permanent.
"""

from abc import ABC, abstractmethod
from typing import Any


class KVStore(ABC):
    """Abstract key-value store."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the value for key, or None if absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store value under key, replacing any previous value and TTL."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete key. Deleting an absent key is a no-op."""
        ...

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


def has_expiry(ttl_seconds: float | None) -> bool:
    """TTL is opt-in: only a positive value expires."""
    return ttl_seconds is not None and ttl_seconds > 0
