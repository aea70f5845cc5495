"""Tests for InMemoryKeyValueStore."""

from __future__ import annotations

import asyncio

import pytest

from reliant_core.adapters.memory import InMemoryKeyValueStore
from reliant_core.ports import IKeyValueStore
from reliant_core.primitives import StoreError


@pytest.fixture
def timed_store(clock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


def test_implements_protocol(store) -> None:
    assert isinstance(store, IKeyValueStore)


@pytest.mark.asyncio
async def test_set_and_get(store) -> None:
    assert await store.get("k") is None
    await store.set("k", "v")
    assert await store.get("k") == "v"


@pytest.mark.asyncio
async def test_set_if_absent_only_first_wins(store) -> None:
    assert await store.set_if_absent("k", "a") is True
    assert await store.set_if_absent("k", "b") is False
    assert await store.get("k") == "a"


@pytest.mark.asyncio
async def test_concurrent_set_if_absent_has_single_winner(store) -> None:
    results = await asyncio.gather(
        *(store.set_if_absent("k", str(i), ttl=5.0) for i in range(20))
    )
    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_expired_entry_behaves_as_absent(timed_store, clock) -> None:
    await timed_store.set("k", "v", ttl=10.0)
    clock.advance(9.9)
    assert await timed_store.get("k") == "v"
    clock.advance(0.1)
    assert await timed_store.get("k") is None
    assert await timed_store.set_if_absent("k", "w") is True


@pytest.mark.asyncio
async def test_compare_and_delete(store) -> None:
    await store.set("k", "owner")
    assert await store.compare_and_delete("k", "other") is False
    assert await store.get("k") == "owner"
    assert await store.compare_and_delete("k", "owner") is True
    assert await store.get("k") is None
    assert await store.compare_and_delete("k", "owner") is False


@pytest.mark.asyncio
async def test_compare_and_set_resets_ttl(timed_store, clock) -> None:
    await timed_store.set("k", "old", ttl=5.0)
    assert await timed_store.compare_and_set("k", "nope", "new") is False
    assert await timed_store.compare_and_set("k", "old", "new", ttl=100.0) is True
    clock.advance(50.0)
    assert await timed_store.get("k") == "new"


@pytest.mark.asyncio
async def test_compare_and_expire(timed_store, clock) -> None:
    await timed_store.set("k", "tok", ttl=5.0)
    assert await timed_store.compare_and_expire("k", "other", 60.0) is False
    assert await timed_store.compare_and_expire("k", "tok", 60.0) is True
    assert await timed_store.ttl("k") == pytest.approx(60.0)
    clock.advance(30.0)
    assert await timed_store.get("k") == "tok"


@pytest.mark.asyncio
async def test_increment_applies_ttl_only_on_create(timed_store, clock) -> None:
    assert await timed_store.increment("c", ttl=10.0) == 1
    clock.advance(5.0)
    assert await timed_store.increment("c", 4, ttl=100.0) == 5
    assert await timed_store.ttl("c") == pytest.approx(5.0)
    clock.advance(5.0)
    assert await timed_store.increment("c") == 1


@pytest.mark.asyncio
async def test_increment_non_integer_raises(store) -> None:
    await store.set("c", "abc")
    with pytest.raises(StoreError):
        await store.increment("c")


@pytest.mark.asyncio
async def test_ttl_for_missing_and_persistent_keys(store) -> None:
    assert await store.ttl("missing") is None
    await store.set("k", "v")
    assert await store.ttl("k") is None


@pytest.mark.asyncio
async def test_non_positive_ttl_rejected(store) -> None:
    with pytest.raises(StoreError):
        await store.set("k", "v", ttl=0)
    with pytest.raises(StoreError):
        await store.set_if_absent("k", "v", ttl=-1.0)


@pytest.mark.asyncio
async def test_delete(store) -> None:
    await store.set("k", "v")
    assert await store.delete("k") is True
    assert await store.delete("k") is False


@pytest.mark.asyncio
async def test_close_rejects_further_use(store) -> None:
    assert await store.health_check() is True
    await store.close()
    assert await store.health_check() is False
    with pytest.raises(StoreError):
        await store.get("k")
