"""IdempotencyGuard — at-most-once effect for operations retried by callers."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import TYPE_CHECKING, Any, TypeVar, cast

from pydantic import BaseModel, Field, model_validator
from pydantic_core import PydanticSerializationError

from ..correlation import get_correlation_id
from ..instrumentation import get_hook_registry
from ..primitives.exceptions import (
    IdempotencyInProgressError,
    IdempotencyRecordError,
    ValidationError,
)
from ..timeouts import call_with_timeout
from .records import CompletedRecord, InProgressRecord, parse_record

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..ports.kv_store import IKeyValueStore

T = TypeVar("T")

logger = logging.getLogger("reliant.idempotency")


class IdempotencyConfig(BaseModel):
    """Configuration for :class:`IdempotencyGuard`."""

    key_prefix: str = "idempotency"

    # How long a completed result is replayed (24h).
    result_ttl: float = Field(default=86400.0, gt=0)

    # Claim lifetime; a crashed owner frees the key after this.
    in_progress_ttl: float = Field(default=60.0, gt=0)

    operation_timeout: float | None = Field(default=None, gt=0)
    store_timeout: float | None = Field(default=5.0, gt=0)

    # Concurrent callers for a claimed key: wait for the result or fail fast.
    wait_for_result: bool = True
    wait_timeout: float = Field(default=30.0, ge=0)
    poll_interval: float = Field(default=0.05, gt=0)

    @model_validator(mode="after")
    def _claim_outlives_operation(self) -> IdempotencyConfig:
        if (
            self.operation_timeout is not None
            and self.in_progress_ttl <= self.operation_timeout
        ):
            raise ValueError("in_progress_ttl must exceed operation_timeout")
        return self


class IdempotencyGuard:
    """
    Runs an operation at most once per caller-supplied key.

    The first caller atomically claims the key with an in-progress record,
    runs the operation and replaces the claim with the result. Later callers
    get the stored result back without the operation being invoked. Failed
    attempts leave nothing behind, so they stay retryable.

    Concurrent callers that find a live claim wait for the owner's result
    (or fail fast with ``wait_for_result=False``). If the owner fails, a
    waiter takes over the claim and runs the operation itself.

    Results are stored as JSON: they must be JSON-compatible. Every call,
    the first included, returns the decoded form, so a tuple comes back as
    a list and a datetime as its ISO string.

    Example:
        ```python
        guard = IdempotencyGuard(store)

        receipt = await guard.execute(
            request.headers["Idempotency-Key"],
            lambda: charge_card(order_id, amount),
        )
        ```
    """

    def __init__(
        self,
        store: IKeyValueStore,
        config: IdempotencyConfig | None = None,
    ) -> None:
        self._store = store
        self.config = config or IdempotencyConfig()

    def _key(self, key: str) -> str:
        return f"{self.config.key_prefix}:{key}"

    async def _store_call(self, call: Callable[[], Awaitable[T]], name: str) -> T:
        return await call_with_timeout(call, self.config.store_timeout, name=name)

    async def execute(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Return the stored result for ``key`` or run ``operation`` once.

        Args:
            key: Non-empty key identifying one logical operation.
            operation: Zero-argument coroutine function producing the result.

        Raises:
            ValidationError: If ``key`` is empty.
            IdempotencyInProgressError: If another caller holds the claim and
                the wait policy is exhausted.
            IdempotencyRecordError: If a stored record is corrupt or the
                result cannot be serialised.
            Exception: Any failure of ``operation`` (nothing is stored).
        """
        if not key:
            raise ValidationError({"key": ["idempotency key must be non-empty"]})

        registry = get_hook_registry()
        return cast(
            "T",
            await registry.execute_all(
                "idempotency.execute",
                {
                    "key": key,
                    "correlation_id": get_correlation_id(),
                },
                lambda: self._execute_internal(key, operation),
            ),
        )

    async def _execute_internal(
        self, key: str, operation: Callable[[], Awaitable[T]]
    ) -> T:
        store_key = self._key(key)
        started = time.monotonic()

        while True:
            raw = await self._store_call(
                lambda: self._store.get(store_key), "idempotency.get"
            )
            if raw is not None:
                record = parse_record(key, raw)
                if isinstance(record, CompletedRecord):
                    logger.info("Replaying stored result for idempotency key %s", key)
                    return cast("T", record.result)

                waited = time.monotonic() - started
                exhausted = waited >= self.config.wait_timeout
                if not self.config.wait_for_result or exhausted:
                    raise IdempotencyInProgressError(key, waited)
                logger.debug("Idempotency key %s is claimed; waiting", key)
                await asyncio.sleep(self.config.poll_interval)
                continue

            claim_record = InProgressRecord(owner=uuid.uuid4().hex)
            claim = claim_record.model_dump_json()
            claimed = await self._store_call(
                lambda: self._store.set_if_absent(
                    store_key, claim, ttl=self.config.in_progress_ttl
                ),
                "idempotency.claim",
            )
            if claimed:
                return await self._run_claimed(
                    key, store_key, claim_record, claim, operation
                )
            # Lost the race for the claim; re-read what the winner stored.

    async def _run_claimed(
        self,
        key: str,
        store_key: str,
        claim_record: InProgressRecord,
        claim: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        logger.info("Executing operation for idempotency key %s", key)
        try:
            result = await call_with_timeout(
                operation, self.config.operation_timeout, name=f"idempotent:{key}"
            )
            completed = CompletedRecord(
                result=result, created_at=claim_record.created_at
            ).model_dump_json()
            # Callers get the decoded form, identical to what a replay returns.
            replayable = cast("T", parse_record(key, completed).result)
        except (Exception, asyncio.CancelledError) as exc:
            await self._release_claim(store_key, claim)
            if isinstance(exc, PydanticSerializationError):
                raise IdempotencyRecordError(
                    key, f"result is not JSON-serialisable: {exc}"
                ) from exc
            logger.info(
                "Operation for idempotency key %s failed (%s); claim released",
                key,
                type(exc).__name__,
            )
            raise

        stored = await self._store_call(
            lambda: self._store.compare_and_set(
                store_key, claim, completed, ttl=self.config.result_ttl
            ),
            "idempotency.complete",
        )
        if not stored:
            logger.warning(
                "Claim for idempotency key %s expired before the result was "
                "stored; a concurrent caller may have run the operation again",
                key,
            )
        return replayable

    async def _release_claim(self, store_key: str, claim: str) -> None:
        # Shielded so that a cancelled caller still frees the key.
        try:
            await asyncio.shield(
                self._store_call(
                    lambda: self._store.compare_and_delete(store_key, claim),
                    "idempotency.release",
                )
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Could not release claim %s (%s); it expires after %.1fs",
                store_key,
                exc,
                self.config.in_progress_ttl,
            )

    async def get_record(self, key: str) -> InProgressRecord | CompletedRecord | None:
        """Return the parsed record stored for ``key``, if any."""
        raw = await self._store_call(
            lambda: self._store.get(self._key(key)), "idempotency.get"
        )
        return parse_record(key, raw) if raw is not None else None

    async def forget(self, key: str) -> bool:
        """Delete the record for ``key`` so the next call executes again."""
        removed = await self._store_call(
            lambda: self._store.delete(self._key(key)), "idempotency.forget"
        )
        if removed:
            logger.info("Forgot idempotency key %s", key)
        return bool(removed)


def idempotency_key(*parts: Any) -> str:
    """Join stable parts into a key, e.g. ``idempotency_key("charge", order_id)``."""
    if not parts:
        raise ValidationError({"parts": ["at least one part is required"]})
    return ":".join(str(part) for part in parts)
