"""Thread-safe in-memory data store with TTL support."""

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable, Iterator
from threading import RLock
from typing import Any

logger = logging.getLogger(__name__)


class TTLEntry:
    """Entry in the TTL store with expiration tracking."""

    def __init__(
        self,
        value: Any,
        ttl_seconds: float | None = None,
        time_func: Callable[[], float] = time.time,
    ):
        """Initialize TTL entry.

        Args:
            value: The stored value
            ttl_seconds: Time to live in seconds, None for no expiration
            time_func: Source of the current epoch time
        """
        self.value = value
        self._time = time_func
        self.created_at = time_func()
        self.expires_at = (
            self.created_at + ttl_seconds if ttl_seconds is not None else None
        )

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return self._time() >= self.expires_at

    def time_until_expiry(self) -> float | None:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self._time())


class MemoryStore:
    """Thread-safe in-memory key-value store with TTL support.

    This store provides:
    - Thread-safe operations using RLock
    - TTL support for automatic expiration
    - Namespaces so several caches can share one store
    - Atomic read-and-delete (``pop``) for single-use values
    - Optional background cleanup of expired entries
    """

    def __init__(
        self,
        cleanup_interval: float = 300.0,
        time_func: Callable[[], float] = time.time,
    ):
        """Initialize memory store.

        Args:
            cleanup_interval: Interval between cleanup runs in seconds
            time_func: Source of the current epoch time
        """
        self._data: dict[str, dict[str, TTLEntry]] = defaultdict(dict)
        self._lock = RLock()
        self._time = time_func
        self._cleanup_interval = cleanup_interval
        self._cleanup_task: asyncio.Task | None = None
        self._cleanup_running = False

    @property
    def lock(self) -> RLock:
        """Re-entrant lock guarding the store, for multi-key updates."""
        return self._lock

    async def start_cleanup(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_running = True
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup(self) -> None:
        """Stop background cleanup task."""
        self._cleanup_running = False
        if self._cleanup_task and not self._cleanup_task.done():
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None

    async def _cleanup_loop(self) -> None:
        while self._cleanup_running:
            try:
                removed = self.cleanup_expired()
                if removed:
                    logger.debug(f"Memory store removed {removed} expired entries")
                await asyncio.sleep(self._cleanup_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Memory store cleanup failed: {e}")
                await asyncio.sleep(self._cleanup_interval)

    def cleanup_expired(self, namespace: str | None = None) -> int:
        """Remove expired entries.

        Args:
            namespace: Namespace to clean, None for all namespaces

        Returns:
            Number of entries cleaned up
        """
        cleaned_count = 0
        with self._lock:
            if namespace is None:
                buckets = list(self._data.values())
            elif namespace in self._data:
                buckets = [self._data[namespace]]
            else:
                buckets = []

            for namespace_data in buckets:
                expired_keys = [
                    key for key, entry in namespace_data.items() if entry.is_expired()
                ]
                for key in expired_keys:
                    del namespace_data[key]
                    cleaned_count += 1
        return cleaned_count

    def set(
        self,
        namespace: str,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
    ) -> None:
        with self._lock:
            self._data[namespace][key] = TTLEntry(value, ttl_seconds, self._time)

    def get(self, namespace: str, key: str) -> Any | None:
        """Get a value from the store.

        Returns:
            Value if found and not expired, None otherwise
        """
        with self._lock:
            if namespace not in self._data:
                return None

            entry = self._data[namespace].get(key)
            if entry is None:
                return None

            if entry.is_expired():
                del self._data[namespace][key]
                return None

            return entry.value

    def pop(self, namespace: str, key: str) -> Any | None:
        """Remove a key and return its value in one step.

        Returns:
            The value if it was present and not expired, None otherwise
        """
        with self._lock:
            if namespace not in self._data:
                return None

            entry = self._data[namespace].pop(key, None)
            if entry is None or entry.is_expired():
                return None

            return entry.value

    def delete(self, namespace: str, key: str) -> bool:
        with self._lock:
            if namespace not in self._data:
                return False

            if key in self._data[namespace]:
                del self._data[namespace][key]
                return True

            return False

    def exists(self, namespace: str, key: str) -> bool:
        return self.get(namespace, key) is not None

    def items(self, namespace: str) -> Iterator[tuple[str, Any]]:
        """Get all non-expired key-value pairs in a namespace.

        The pairs are snapshotted under the lock so callers may delete
        while iterating.
        """
        with self._lock:
            if namespace not in self._data:
                return iter(())

            namespace_data = self._data[namespace]
            expired_keys = [key for key, entry in namespace_data.items() if entry.is_expired()]
            for key in expired_keys:
                del namespace_data[key]

            return iter([(key, entry.value) for key, entry in namespace_data.items()])

    def clear(self, namespace: str) -> None:
        with self._lock:
            self._data[namespace].clear()

    def size(self, namespace: str | None = None) -> int:
        """Get number of non-expired entries.

        Args:
            namespace: Namespace to count, None to count all namespaces
        """
        with self._lock:
            namespaces = list(self._data.keys()) if namespace is None else [namespace]
            return sum(len(list(self.items(ns))) for ns in namespaces)

    def ttl(self, namespace: str, key: str) -> float | None:
        """Get time to live for a key.

        Returns:
            Time to live in seconds, None if no expiration or key doesn't exist
        """
        with self._lock:
            if namespace not in self._data:
                return None

            entry = self._data[namespace].get(key)
            if entry is None or entry.is_expired():
                return None

            return entry.time_until_expiry()
