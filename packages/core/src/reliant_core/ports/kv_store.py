"""IKeyValueStore — protocol for the store shared by coordinating processes.

The lock and the idempotency guard never assume a process-local mutex is
enough: every read-modify-write they need is one of the atomic operations
below, executed by the store itself.

TTL conventions:
- TTLs are seconds as ``float``; ``None`` means the entry never expires.
- Expired entries behave exactly like absent ones for every operation.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IKeyValueStore(Protocol):
    """
    Key-value store protocol used by ``DistributedLock`` and
    ``IdempotencyGuard``.

    Implementations can use Redis (Lua scripts), a database with
    conditional updates, or an in-process dict for testing.

    Example:
        ```python
        store = InMemoryKeyValueStore()
        if await store.set_if_absent("lock:orders", token, ttl=30.0):
            ...
            await store.compare_and_delete("lock:orders", token)
        ```
    """

    async def get(self, key: str) -> str | None:
        """Return the stored value, or ``None`` when absent or expired."""
        ...

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        """Unconditionally store ``value``."""
        ...

    async def set_if_absent(
        self, key: str, value: str, ttl: float | None = None
    ) -> bool:
        """
        Atomically store ``value`` only when ``key`` does not exist.

        Returns:
            True if the value was stored, False if the key was already held.
        """
        ...

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """
        Atomically delete ``key`` only when its value equals ``expected``.

        Returns:
            True if the entry was removed.
        """
        ...

    async def compare_and_set(
        self,
        key: str,
        expected: str,
        value: str,
        ttl: float | None = None,
    ) -> bool:
        """
        Atomically replace the value only when it currently equals ``expected``.

        The TTL of the entry is reset to ``ttl``.
        """
        ...

    async def compare_and_expire(self, key: str, expected: str, ttl: float) -> bool:
        """Atomically reset the TTL only when the value equals ``expected``."""
        ...

    async def increment(
        self, key: str, amount: int = 1, ttl: float | None = None
    ) -> int:
        """
        Atomically add ``amount`` to an integer counter and return the new value.

        A missing counter starts at zero; ``ttl`` is applied only when the
        counter is created by this call.
        """
        ...

    async def ttl(self, key: str) -> float | None:
        """Remaining lifetime in seconds; ``None`` if absent or non-expiring."""
        ...

    async def delete(self, key: str) -> bool:
        """Unconditionally delete ``key``. Returns True if it existed."""
        ...

    async def health_check(self) -> bool:
        """Return True if the store is reachable."""
        ...

    async def close(self) -> None:
        """Release connections held by the store."""
        ...
