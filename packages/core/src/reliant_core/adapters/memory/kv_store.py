"""InMemoryKeyValueStore — testing and single-process implementation of IKeyValueStore."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ...ports.kv_store import IKeyValueStore
from ...primitives.exceptions import StoreError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("reliant.kv_store.memory")


@dataclass
class _Entry:
    value: str
    expires_at: float | None


class InMemoryKeyValueStore(IKeyValueStore):
    """
    In-memory implementation of IKeyValueStore.

    Features:
    - Every compound operation runs under one ``threading.Lock``, so it is
      atomic for coroutines and threads of the same process
    - Lazy expiry: entries are dropped when touched after their deadline
    - Injectable monotonic clock for deterministic TTL tests

    NOT shared across processes — use ``RedisKeyValueStore`` for that.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._closed = False

    # ── internals (call with self._lock held) ────────────────────────

    def _deadline(self, ttl: float | None) -> float | None:
        if ttl is None:
            return None
        if ttl <= 0:
            raise StoreError(f"TTL must be positive, got {ttl}")
        return self._clock() + ttl

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError("InMemoryKeyValueStore is closed")

    # ── IKeyValueStore ───────────────────────────────────────────────

    async def get(self, key: str) -> str | None:
        with self._lock:
            self._check_open()
            entry = self._live(key)
            return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        with self._lock:
            self._check_open()
            self._data[key] = _Entry(value, self._deadline(ttl))

    async def set_if_absent(
        self, key: str, value: str, ttl: float | None = None
    ) -> bool:
        with self._lock:
            self._check_open()
            if self._live(key) is not None:
                return False
            self._data[key] = _Entry(value, self._deadline(ttl))
            return True

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._lock:
            self._check_open()
            entry = self._live(key)
            if entry is None or entry.value != expected:
                return False
            del self._data[key]
            return True

    async def compare_and_set(
        self,
        key: str,
        expected: str,
        value: str,
        ttl: float | None = None,
    ) -> bool:
        with self._lock:
            self._check_open()
            entry = self._live(key)
            if entry is None or entry.value != expected:
                return False
            self._data[key] = _Entry(value, self._deadline(ttl))
            return True

    async def compare_and_expire(self, key: str, expected: str, ttl: float) -> bool:
        with self._lock:
            self._check_open()
            entry = self._live(key)
            if entry is None or entry.value != expected:
                return False
            entry.expires_at = self._deadline(ttl)
            return True

    async def increment(
        self, key: str, amount: int = 1, ttl: float | None = None
    ) -> int:
        with self._lock:
            self._check_open()
            entry = self._live(key)
            if entry is None:
                entry = _Entry("0", self._deadline(ttl))
                self._data[key] = entry
            try:
                value = int(entry.value) + amount
            except ValueError as exc:
                raise StoreError(f"Value at {key!r} is not an integer") from exc
            entry.value = str(value)
            return value

    async def ttl(self, key: str) -> float | None:
        with self._lock:
            self._check_open()
            entry = self._live(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0.0, entry.expires_at - self._clock())

    async def delete(self, key: str) -> bool:
        with self._lock:
            self._check_open()
            return self._data.pop(key, None) is not None

    async def health_check(self) -> bool:
        return not self._closed

    async def close(self) -> None:
        with self._lock:
            self._closed = True
            self._data.clear()
        logger.debug("InMemoryKeyValueStore closed")

    def clear(self) -> None:
        """Drop every entry (for testing)."""
        with self._lock:
            self._data.clear()
