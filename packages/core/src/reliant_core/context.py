"""ReliantContext — application-level owner of the shared store.

Build one per process at startup and pass it (or the components it creates)
to application code; nothing in the toolkit reaches for module globals.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .idempotency import IdempotencyConfig, IdempotencyGuard
from .locking import DistributedLock, LockConfig
from .resilience import CircuitBreaker, CircuitBreakerConfig, CircuitBreakerRegistry
from .sagas import SagaConfig, SagaCoordinator

if TYPE_CHECKING:
    from .ports.kv_store import IKeyValueStore

logger = logging.getLogger("reliant.context")


class ReliantContext:
    """
    Holds the store connection and the components built on top of it.

    Example:
        ```python
        async with ReliantContext(RedisKeyValueStore.from_url(url)) as ctx:
            token = await ctx.lock.acquire("report:daily", ttl=60.0)
            receipt = await ctx.idempotency.execute(key, charge)
            breaker = ctx.circuit_breaker("payments")
        ```
    """

    def __init__(
        self,
        store: IKeyValueStore,
        *,
        idempotency_config: IdempotencyConfig | None = None,
        lock_config: LockConfig | None = None,
        saga_config: SagaConfig | None = None,
        circuit_breaker_config: CircuitBreakerConfig | None = None,
    ) -> None:
        self.store = store
        self.idempotency = IdempotencyGuard(store, idempotency_config)
        self.lock = DistributedLock(store, lock_config)
        self.sagas = SagaCoordinator(saga_config)
        self.circuit_breakers = CircuitBreakerRegistry(circuit_breaker_config)
        self._closed = False

    def circuit_breaker(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        """Return the process-wide breaker for ``name``."""
        return self.circuit_breakers.get(name, config)

    async def health_check(self) -> bool:
        """Return True if the shared store is reachable."""
        return await self.lock.health_check()

    async def aclose(self) -> None:
        """Close the store. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self.store.close()
        logger.info("ReliantContext closed")

    async def __aenter__(self) -> ReliantContext:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
