"""
Shared Store Protocol

This module defines the abstract protocol for the key-value store shared by
every process of a deployment, plus a single-process implementation used for
development and tests.

Architectural Decision: Protocol-based abstraction
- The rate limiter, job lock, dead letter store and violation tracker depend
  only on this protocol
- RedisStore is the production implementation
- InMemoryStore gives tests the same atomicity and TTL semantics with a
  controllable clock

Atomic operations:
- set_if_absent: acquire a job lock
- delete_if_equals: release a job lock only while still owning it
- compare_and_set: race-free read-modify-write of token buckets
"""

import asyncio
import time
from typing import Any, Callable, Protocol, runtime_checkable

from sms_delivery.core.exceptions import StoreError, StoreUnavailableError


@runtime_checkable
class SharedStore(Protocol):
    """
    Protocol defining the interface for shared store implementations.

    Values are strings; callers serialize structured records themselves.
    Implementations raise StoreUnavailableError when the backend cannot be
    reached.

    Implementations:
    - RedisStore: Production Redis-backed store
    - InMemoryStore: Testing/development in-memory store
    """

    async def ping(self) -> bool:
        """
        Check if the store is reachable.

        Returns:
            bool: True if healthy, False otherwise
        """
        ...

    async def get(self, key: str) -> str | None:
        """
        Get a value.

        Returns:
            Value or None if the key does not exist
        """
        ...

    async def set(self, key: str, value: str, ttl: float | None = None) -> bool:
        """
        Set a value, optionally expiring after `ttl` seconds.
        """
        ...

    async def delete(self, *keys: str) -> int:
        """
        Delete keys.

        Returns:
            int: Number of keys deleted
        """
        ...

    async def exists(self, key: str) -> bool:
        """Check if a key exists."""
        ...

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        """
        Atomically set `key` only if it does not exist, with expiry.

        Returns:
            bool: True if this call created the key
        """
        ...

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """
        Atomically delete `key` only if its current value equals `expected`.

        Returns:
            bool: True if the key was deleted
        """
        ...

    async def compare_and_set(
        self, key: str, expected: str | None, value: str, ttl_ms: int | None = None
    ) -> bool:
        """
        Atomically replace the value of `key` if it still equals `expected`.

        `expected=None` means the key must not exist.

        Returns:
            bool: True if the write happened
        """
        ...

    async def incr(self, key: str) -> int:
        """Atomically increment an integer counter, returning the new value. Keeps any TTL."""
        ...

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        """List keys starting with `prefix`."""
        ...

    # List operations
    async def lpush(self, key: str, *values: str) -> int:
        """Prepend values to a list, returning its new length."""
        ...

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        """Get list items between `start` and `end` (inclusive, negative from tail)."""
        ...

    async def lrem(self, key: str, count: int, value: str) -> int:
        """Remove occurrences of `value` from a list."""
        ...

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        """Trim a list to the given inclusive range."""
        ...

    async def expire(self, key: str, ttl: float) -> bool:
        """Set TTL (seconds) on an existing key."""
        ...


def _list_bounds(start: int, end: int, length: int) -> tuple[int, int]:
    """Resolve Redis-style inclusive list indices to a python slice."""
    if start < 0:
        start = max(length + start, 0)
    if end < 0:
        end = length + end
    end = min(end, length - 1)
    if start > end:
        return 0, 0
    return start, end + 1


class InMemoryStore:
    """
    In-memory shared store for tests and single-process development.

    Implements the SharedStore protocol. Every operation runs under one
    asyncio lock and never awaits while holding it, so the atomic operations
    are atomic with respect to every task on the event loop.

    Expiry is evaluated lazily against `clock`, which tests replace with a
    manual clock to move time forward without sleeping.

    Note: This is NOT distributed. Use only for tests and development.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expires_at: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._available = True

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def set_available(self, available: bool) -> None:
        """Simulate an outage: while unavailable every call raises StoreUnavailableError."""
        self._available = available

    def ttl_remaining(self, key: str) -> float | None:
        """Seconds until `key` expires, None when it has no expiry or does not exist."""
        self._purge(key)
        if key not in self._expires_at:
            return None
        return self._expires_at[key] - self._clock()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_available(self) -> None:
        if not self._available:
            raise StoreUnavailableError("In-memory store is unavailable")

    def _purge(self, key: str) -> None:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            self._expires_at.pop(key, None)

    def _live(self, key: str) -> Any:
        self._purge(key)
        return self._data.get(key)

    def _write(self, key: str, value: Any, ttl: float | None) -> None:
        self._data[key] = value
        if ttl is not None:
            self._expires_at[key] = self._clock() + ttl
        else:
            self._expires_at.pop(key, None)

    def _string(self, key: str) -> str | None:
        value = self._live(key)
        if value is not None and not isinstance(value, str):
            raise StoreError(f"WRONGTYPE key holds a list: {key}")
        return value

    def _list(self, key: str) -> list[str]:
        value = self._live(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise StoreError(f"WRONGTYPE key holds a string: {key}")
        return value

    # ------------------------------------------------------------------
    # SharedStore
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        return self._available

    async def get(self, key: str) -> str | None:
        async with self._lock:
            self._check_available()
            return self._string(key)

    async def set(self, key: str, value: str, ttl: float | None = None) -> bool:
        async with self._lock:
            self._check_available()
            self._write(key, value, ttl)
            return True

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            self._check_available()
            count = 0
            for key in keys:
                if self._live(key) is not None:
                    del self._data[key]
                    self._expires_at.pop(key, None)
                    count += 1
            return count

    async def exists(self, key: str) -> bool:
        async with self._lock:
            self._check_available()
            return self._live(key) is not None

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        async with self._lock:
            self._check_available()
            if self._live(key) is not None:
                return False
            self._write(key, value, ttl_ms / 1000)
            return True

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        async with self._lock:
            self._check_available()
            if self._string(key) != expected:
                return False
            del self._data[key]
            self._expires_at.pop(key, None)
            return True

    async def compare_and_set(
        self, key: str, expected: str | None, value: str, ttl_ms: int | None = None
    ) -> bool:
        async with self._lock:
            self._check_available()
            if self._string(key) != expected:
                return False
            self._write(key, value, ttl_ms / 1000 if ttl_ms is not None else None)
            return True

    async def incr(self, key: str) -> int:
        async with self._lock:
            self._check_available()
            current = self._string(key)
            try:
                value = int(current) + 1 if current is not None else 1
            except ValueError:
                raise StoreError(f"ERR value is not an integer: {key}") from None
            self._data[key] = str(value)
            return value

    async def keys_with_prefix(self, prefix: str) -> list[str]:
        async with self._lock:
            self._check_available()
            return [
                key for key in list(self._data)
                if key.startswith(prefix) and self._live(key) is not None
            ]

    async def lpush(self, key: str, *values: str) -> int:
        async with self._lock:
            self._check_available()
            items = self._list(key)
            if key not in self._data:
                self._data[key] = items
            for value in values:
                items.insert(0, value)
            return len(items)

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        async with self._lock:
            self._check_available()
            items = self._list(key)
            lo, hi = _list_bounds(start, end, len(items))
            return list(items[lo:hi])

    async def lrem(self, key: str, count: int, value: str) -> int:
        async with self._lock:
            self._check_available()
            items = self._list(key)
            indices = [i for i, item in enumerate(items) if item == value]
            if count > 0:
                indices = indices[:count]
            elif count < 0:
                indices = indices[count:]
            for index in reversed(indices):
                del items[index]
            if not items:
                self._data.pop(key, None)
                self._expires_at.pop(key, None)
            return len(indices)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        async with self._lock:
            self._check_available()
            items = self._list(key)
            lo, hi = _list_bounds(start, end, len(items))
            kept = items[lo:hi]
            if kept:
                items[:] = kept
            else:
                self._data.pop(key, None)
                self._expires_at.pop(key, None)
            return True

    async def expire(self, key: str, ttl: float) -> bool:
        async with self._lock:
            self._check_available()
            if self._live(key) is None:
                return False
            self._expires_at[key] = self._clock() + ttl
            return True
