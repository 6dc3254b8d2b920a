"""
In-memory key-value store.

Entries expire lazily on read and are also evicted by a periodic sweep task
owned by the store instance. Suitable for tests, development and
single-process deployments.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable

import structlog

from .base import KVStore, has_expiry

logger = structlog.get_logger(__name__)

DEFAULT_SWEEP_INTERVAL = 60.0


@dataclass
class _Entry:
    value: Any
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class MemoryKVStore(KVStore):
    """Dict-backed KV store with TTL support.

    Example:
        async with MemoryKVStore() as store:
            await store.set("key", "value", ttl_seconds=60)
            value = await store.get("key")
    """

    def __init__(
        self,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the store.

        Args:
            sweep_interval: Seconds between background eviction passes
            clock: Monotonic time source in seconds
        """
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")

        self._storage: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._sweep_task: asyncio.Task | None = None

    async def __aenter__(self) -> "MemoryKVStore":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def __len__(self) -> int:
        return len(self._storage)

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Start the background sweep. Must be called from a running loop."""
        if self.is_sweeping:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.debug("memory_store_sweeper_started", interval=self._sweep_interval)

    async def close(self) -> None:
        """Stop the background sweep and drop all entries."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.debug("memory_store_sweeper_stopped")
        async with self._lock:
            self._storage.clear()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()

    async def sweep(self) -> int:
        """Evict every expired entry. Returns the number of evicted keys."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, entry in self._storage.items() if entry.is_expired(now)]
            for key in expired:
                del self._storage[key]

        if expired:
            logger.debug("memory_store_swept", evicted=len(expired))
        return len(expired)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._storage.get(key)
            if entry is None:
                return None

            if entry.is_expired(self._clock()):
                del self._storage[key]
                return None

            return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if has_expiry(ttl_seconds) else None
        async with self._lock:
            self._storage[key] = _Entry(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._storage.pop(key, None)
