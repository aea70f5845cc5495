"""Tests for IdempotencyGuard."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from reliant_core.adapters.memory import InMemoryKeyValueStore
from reliant_core.idempotency import (
    CompletedRecord,
    IdempotencyConfig,
    IdempotencyGuard,
    InProgressRecord,
    idempotency_key,
)
from reliant_core.primitives import (
    IdempotencyInProgressError,
    IdempotencyRecordError,
    OperationTimeoutError,
    ValidationError,
)


@pytest.fixture
def guard(store) -> IdempotencyGuard:
    return IdempotencyGuard(store, IdempotencyConfig(poll_interval=0.01))


@pytest.mark.asyncio
async def test_second_call_replays_result_without_running(guard) -> None:
    operation = AsyncMock(return_value={"receipt": "r-1"})

    first = await guard.execute("charge-1", operation)
    second = await guard.execute("charge-1", operation)

    assert first == second == {"receipt": "r-1"}
    operation.assert_awaited_once()


@pytest.mark.asyncio
async def test_distinct_keys_run_independently(guard) -> None:
    operation = AsyncMock(side_effect=[1, 2])
    assert await guard.execute("a", operation) == 1
    assert await guard.execute("b", operation) == 2
    assert operation.await_count == 2


@pytest.mark.asyncio
async def test_failure_is_not_stored_and_retry_runs_again(guard, store) -> None:
    operation = AsyncMock(side_effect=[RuntimeError("gateway down"), "ok"])

    with pytest.raises(RuntimeError, match="gateway down"):
        await guard.execute("k", operation)
    assert await store.get("idempotency:k") is None

    assert await guard.execute("k", operation) == "ok"
    assert operation.await_count == 2


@pytest.mark.asyncio
async def test_empty_key_rejected(guard) -> None:
    with pytest.raises(ValidationError):
        await guard.execute("", AsyncMock())


@pytest.mark.asyncio
async def test_concurrent_callers_execute_once(guard) -> None:
    calls = 0

    async def slow_charge() -> str:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return "charged"

    results = await asyncio.gather(
        *(guard.execute("order-7", slow_charge) for _ in range(5))
    )

    assert results == ["charged"] * 5
    assert calls == 1


@pytest.mark.asyncio
async def test_fail_fast_when_not_waiting(store) -> None:
    guard = IdempotencyGuard(store, IdempotencyConfig(wait_for_result=False))
    started = asyncio.Event()

    async def slow() -> str:
        started.set()
        await asyncio.sleep(0.1)
        return "done"

    owner = asyncio.create_task(guard.execute("k", slow))
    await started.wait()

    with pytest.raises(IdempotencyInProgressError) as exc_info:
        await guard.execute("k", slow)
    assert exc_info.value.key == "k"
    assert await owner == "done"


@pytest.mark.asyncio
async def test_waiter_gives_up_after_wait_timeout(store) -> None:
    guard = IdempotencyGuard(
        store, IdempotencyConfig(wait_timeout=0.05, poll_interval=0.01)
    )
    await store.set(
        "idempotency:k", InProgressRecord(owner="someone").model_dump_json(), ttl=60
    )

    with pytest.raises(IdempotencyInProgressError):
        await guard.execute("k", AsyncMock())


@pytest.mark.asyncio
async def test_waiter_takes_over_when_owner_fails(guard) -> None:
    started = asyncio.Event()

    async def failing() -> str:
        started.set()
        await asyncio.sleep(0.03)
        raise RuntimeError("boom")

    fallback = AsyncMock(return_value="second")

    owner = asyncio.create_task(guard.execute("k", failing))
    await started.wait()
    result = await guard.execute("k", fallback)

    assert result == "second"
    fallback.assert_awaited_once()
    with pytest.raises(RuntimeError):
        await owner


@pytest.mark.asyncio
async def test_expired_claim_allows_new_owner(clock) -> None:
    timed = InMemoryKeyValueStore(clock=clock)
    guard = IdempotencyGuard(timed, IdempotencyConfig(in_progress_ttl=10))
    await timed.set(
        "idempotency:k", InProgressRecord(owner="crashed").model_dump_json(), ttl=10
    )
    clock.advance(11)

    assert await guard.execute("k", AsyncMock(return_value=3)) == 3


@pytest.mark.asyncio
async def test_operation_timeout_releases_claim(store) -> None:
    guard = IdempotencyGuard(
        store, IdempotencyConfig(operation_timeout=0.01, in_progress_ttl=5)
    )

    async def hang() -> None:
        await asyncio.sleep(1)

    with pytest.raises(OperationTimeoutError):
        await guard.execute("k", hang)
    assert await store.get("idempotency:k") is None


@pytest.mark.asyncio
async def test_cancelled_owner_releases_claim(guard, store) -> None:
    started = asyncio.Event()

    async def hang() -> None:
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(guard.execute("k", hang))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0)

    assert await store.get("idempotency:k") is None


@pytest.mark.asyncio
async def test_unserialisable_result_raises_record_error(guard, store) -> None:
    with pytest.raises(IdempotencyRecordError):
        await guard.execute("k", AsyncMock(return_value=object()))
    assert await store.get("idempotency:k") is None


@pytest.mark.asyncio
async def test_corrupt_record_raises(guard, store) -> None:
    await store.set("idempotency:k", "not json")
    with pytest.raises(IdempotencyRecordError) as exc_info:
        await guard.execute("k", AsyncMock())
    assert exc_info.value.key == "k"


@pytest.mark.asyncio
async def test_get_record_and_forget(guard) -> None:
    assert await guard.get_record("k") is None
    await guard.execute("k", AsyncMock(return_value=[1, 2]))

    record = await guard.get_record("k")
    assert isinstance(record, CompletedRecord)
    assert record.result == [1, 2]

    assert await guard.forget("k") is True
    assert await guard.get_record("k") is None


@pytest.mark.asyncio
async def test_result_stored_with_result_ttl(store) -> None:
    guard = IdempotencyGuard(store, IdempotencyConfig(result_ttl=120))
    await guard.execute("k", AsyncMock(return_value="x"))
    assert await store.ttl("idempotency:k") == pytest.approx(120, abs=1)


def test_config_requires_claim_to_outlive_operation() -> None:
    from pydantic import ValidationError as PydanticValidationError

    with pytest.raises(PydanticValidationError):
        IdempotencyConfig(operation_timeout=60, in_progress_ttl=30)


def test_idempotency_key_builder() -> None:
    assert idempotency_key("charge", 42, "eur") == "charge:42:eur"
    with pytest.raises(ValidationError):
        idempotency_key()


@pytest.mark.asyncio
async def test_first_call_returns_same_value_as_replay(guard) -> None:
    operation = AsyncMock(
        return_value={"at": datetime(2024, 1, 1, tzinfo=timezone.utc), "ids": (1, 2)}
    )

    first = await guard.execute("k", operation)
    second = await guard.execute("k", operation)

    assert first == second
    assert first["ids"] == [1, 2]
    assert isinstance(first["at"], str)
    operation.assert_awaited_once()


@pytest.mark.asyncio
async def test_completed_record_keeps_claim_creation_time(guard) -> None:
    observed: list[datetime] = []

    async def charge() -> str:
        observed.append(datetime.now(timezone.utc))
        return "ok"

    await guard.execute("k", charge)
    record = await guard.get_record("k")

    assert isinstance(record, CompletedRecord)
    assert record.created_at <= observed[0] <= record.completed_at
