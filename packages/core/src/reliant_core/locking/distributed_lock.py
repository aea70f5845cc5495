"""DistributedLock — token-based mutual exclusion through a shared store.

TTL guidance:
- The TTL guarantees eventual release when a holder crashes, at the price
  of safety: a holder that overruns its TTL can lose the lock mid-section.
- Choose ``ttl`` much larger than the expected critical section, or call
  :meth:`DistributedLock.extend` periodically (e.g. every ttl/2 seconds).
- Pass the fencing number of the token to downstream writers so they can
  reject a preempted holder (see :func:`fencing_number`).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from typing import TYPE_CHECKING, TypeVar, cast

from pydantic import BaseModel, Field

from ..correlation import get_correlation_id
from ..instrumentation import get_hook_registry
from ..primitives.exceptions import LockAcquisitionError, ValidationError
from ..timeouts import call_with_timeout

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from ..ports.kv_store import IKeyValueStore

T = TypeVar("T")

logger = logging.getLogger("reliant.locking")


class LockConfig(BaseModel):
    """Configuration for :class:`DistributedLock`."""

    key_prefix: str = "lock"
    default_ttl: float = Field(default=30.0, gt=0)
    retry_interval: float = Field(default=0.1, gt=0)
    store_timeout: float | None = Field(default=5.0, gt=0)

    # Fence counters are kept per resource key and never expire unless this
    # is set. It must be far longer than any lock lifetime: an expired counter
    # restarts at 1 and its fencing numbers are no longer monotonic.
    fence_ttl: float | None = Field(default=None, gt=0)


def fencing_number(token: str) -> int:
    """Extract the monotonically increasing fencing number from a lock token."""
    try:
        return int(token.split(":", 1)[0])
    except ValueError as err:
        raise ValidationError({"token": [f"not a lock token: {token!r}"]}) from err


class DistributedLock:
    """
    Mutual exclusion over named resources shared by independent processes.

    Features:
    - Atomic set-if-absent acquisition with TTL (no process-local mutex)
    - Owner tokens: only the holder's token can release or extend the lock
    - Fencing numbers embedded in tokens (``"<fence>:<uuid>"``)
    - Contention is a normal outcome: ``acquire`` returns ``None``

    Example:
        ```python
        lock = DistributedLock(store)

        token = await lock.acquire("invoice:42", ttl=30.0)
        if token is None:
            return  # someone else is working on it
        try:
            ...
        finally:
            await lock.release("invoice:42", token)

        # or
        async with lock.hold("invoice:42", wait_timeout=5.0) as token:
            ...
        ```
    """

    def __init__(
        self,
        store: IKeyValueStore,
        config: LockConfig | None = None,
    ) -> None:
        self._store = store
        self.config = config or LockConfig()

    def _lock_key(self, resource_key: str) -> str:
        return f"{self.config.key_prefix}:{resource_key}"

    def _fence_key(self, resource_key: str) -> str:
        return f"{self.config.key_prefix}-fence:{resource_key}"

    async def _store_call(self, call: Callable[[], Awaitable[T]], name: str) -> T:
        return await call_with_timeout(call, self.config.store_timeout, name=name)

    @staticmethod
    def _validate(resource_key: str, ttl: float) -> None:
        errors: dict[str, list[str]] = {}
        if not resource_key:
            errors["resource_key"] = ["must be non-empty"]
        if ttl <= 0:
            errors["ttl"] = ["must be positive"]
        if errors:
            raise ValidationError(errors)

    async def acquire(
        self,
        resource_key: str,
        ttl: float | None = None,
        *,
        wait_timeout: float = 0.0,
    ) -> str | None:
        """
        Try to take the lock on ``resource_key``.

        Args:
            resource_key: Name of the shared resource.
            ttl: Seconds until the lock expires on its own.
            wait_timeout: Keep retrying for this many seconds (0 = single try).

        Returns:
            The owner token, or ``None`` if another owner holds the lock.
        """
        ttl = self.config.default_ttl if ttl is None else ttl
        self._validate(resource_key, ttl)

        registry = get_hook_registry()
        return cast(
            "str | None",
            await registry.execute_all(
                "lock.acquire",
                {
                    "resource_key": resource_key,
                    "ttl": ttl,
                    "wait_timeout": wait_timeout,
                    "correlation_id": get_correlation_id(),
                },
                lambda: self._acquire_internal(resource_key, ttl, wait_timeout),
            ),
        )

    async def _acquire_internal(
        self, resource_key: str, ttl: float, wait_timeout: float
    ) -> str | None:
        lock_key = self._lock_key(resource_key)
        deadline = time.monotonic() + wait_timeout

        while True:
            token = await self._try_acquire(resource_key, lock_key, ttl)
            if token is not None:
                logger.debug("Lock acquired: %s (ttl=%.1fs)", lock_key, ttl)
                return token
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug("Lock busy: %s", lock_key)
                return None
            await asyncio.sleep(min(self.config.retry_interval, remaining))

    async def _try_acquire(
        self, resource_key: str, lock_key: str, ttl: float
    ) -> str | None:
        # The TTL only applies when the counter is created (see LockConfig).
        fence = await self._store_call(
            lambda: self._store.increment(
                self._fence_key(resource_key), ttl=self.config.fence_ttl
            ),
            "lock.fence",
        )
        token = f"{fence}:{uuid.uuid4().hex}"
        acquired = await self._store_call(
            lambda: self._store.set_if_absent(lock_key, token, ttl=ttl),
            "lock.acquire",
        )
        return token if acquired else None

    async def release(self, resource_key: str, token: str) -> bool:
        """
        Release the lock if ``token`` still owns it.

        Returns:
            True if the lock was removed; False if it had expired, was taken
            over by another owner, or was never held with this token.
        """
        registry = get_hook_registry()
        return bool(
            await registry.execute_all(
                "lock.release",
                {
                    "resource_key": resource_key,
                    "correlation_id": get_correlation_id(),
                },
                lambda: self._release_internal(resource_key, token),
            )
        )

    async def _release_internal(self, resource_key: str, token: str) -> bool:
        lock_key = self._lock_key(resource_key)
        released = await self._store_call(
            lambda: self._store.compare_and_delete(lock_key, token), "lock.release"
        )
        if released:
            logger.debug("Lock released: %s", lock_key)
        else:
            logger.info("Lock %s not released: token does not own it", lock_key)
        return bool(released)

    async def extend(self, resource_key: str, token: str, ttl: float) -> bool:
        """
        Reset the TTL of a lock still owned by ``token``.

        Returns:
            True if extended, False if ``token`` no longer owns the lock.
        """
        self._validate(resource_key, ttl)
        lock_key = self._lock_key(resource_key)
        return bool(
            await self._store_call(
                lambda: self._store.compare_and_expire(lock_key, token, ttl),
                "lock.extend",
            )
        )

    async def owner(self, resource_key: str) -> str | None:
        """Return the token of the current holder, if any."""
        return await self._store_call(
            lambda: self._store.get(self._lock_key(resource_key)), "lock.owner"
        )

    @contextlib.asynccontextmanager
    async def hold(
        self,
        resource_key: str,
        ttl: float | None = None,
        *,
        wait_timeout: float = 0.0,
    ) -> AsyncIterator[str]:
        """
        Hold the lock for the duration of an ``async with`` block.

        Raises:
            LockAcquisitionError: If the lock could not be acquired.
        """
        token = await self.acquire(resource_key, ttl, wait_timeout=wait_timeout)
        if token is None:
            raise LockAcquisitionError(resource_key, wait_timeout)
        try:
            yield token
        finally:
            released = await asyncio.shield(self.release(resource_key, token))
            if not released:
                logger.warning(
                    "Lock on %s expired before the critical section ended; "
                    "another owner may have run concurrently",
                    resource_key,
                )

    async def health_check(self) -> bool:
        """Verify the underlying store is reachable."""
        try:
            return bool(await self._store.health_check())
        except Exception as exc:  # noqa: BLE001
            logger.error("Lock store health check failed: %s", exc)
            return False
