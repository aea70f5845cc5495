"""Tests for RedisKeyValueStore."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from redis import exceptions as redis_exceptions

from reliant_core.ports import IKeyValueStore
from reliant_core.primitives import StoreError
from reliant_redis import RedisConnectionError, RedisKeyValueStore, RedisStoreError
from reliant_redis.kv_store import (
    COMPARE_AND_DELETE_SCRIPT,
    COMPARE_AND_EXPIRE_SCRIPT,
    COMPARE_AND_SET_SCRIPT,
    INCREMENT_SCRIPT,
)


@pytest.mark.asyncio
class TestRedisKeyValueStore:
    @pytest_asyncio.fixture
    async def redis_client(self):
        return AsyncMock()

    @pytest_asyncio.fixture
    async def kv_store(self, redis_client):
        return RedisKeyValueStore(redis_client)

    async def test_implements_protocol(self, kv_store):
        assert isinstance(kv_store, IKeyValueStore)

    async def test_get_decodes_bytes(self, kv_store, redis_client):
        redis_client.get.return_value = b"owner-token"
        assert await kv_store.get("lock:r") == "owner-token"
        redis_client.get.assert_awaited_with("lock:r")

    async def test_get_missing(self, kv_store, redis_client):
        redis_client.get.return_value = None
        assert await kv_store.get("missing") is None

    async def test_set_with_ttl_uses_milliseconds(self, kv_store, redis_client):
        await kv_store.set("k", "v", ttl=1.5)
        redis_client.set.assert_awaited_with("k", "v", px=1500)

    async def test_set_without_ttl(self, kv_store, redis_client):
        await kv_store.set("k", "v")
        redis_client.set.assert_awaited_with("k", "v", px=None)

    async def test_set_if_absent(self, kv_store, redis_client):
        redis_client.set.return_value = True
        assert await kv_store.set_if_absent("k", "v", ttl=30) is True
        redis_client.set.assert_awaited_with("k", "v", nx=True, px=30000)

        redis_client.set.return_value = None
        assert await kv_store.set_if_absent("k", "v", ttl=30) is False

    async def test_non_positive_ttl_rejected(self, kv_store, redis_client):
        with pytest.raises(StoreError):
            await kv_store.set("k", "v", ttl=0)
        redis_client.set.assert_not_awaited()

    async def test_compare_and_delete(self, kv_store, redis_client):
        redis_client.eval.return_value = 1
        assert await kv_store.compare_and_delete("k", "tok") is True
        redis_client.eval.assert_awaited_with(COMPARE_AND_DELETE_SCRIPT, 1, "k", "tok")

        redis_client.eval.return_value = 0
        assert await kv_store.compare_and_delete("k", "tok") is False

    async def test_compare_and_set(self, kv_store, redis_client):
        redis_client.eval.return_value = 1
        assert await kv_store.compare_and_set("k", "old", "new", ttl=2) is True
        redis_client.eval.assert_awaited_with(
            COMPARE_AND_SET_SCRIPT, 1, "k", "old", "new", "2000"
        )

        redis_client.eval.return_value = b"0"
        assert await kv_store.compare_and_set("k", "old", "new") is False
        redis_client.eval.assert_awaited_with(
            COMPARE_AND_SET_SCRIPT, 1, "k", "old", "new", ""
        )

    async def test_compare_and_expire(self, kv_store, redis_client):
        redis_client.eval.return_value = 1
        assert await kv_store.compare_and_expire("k", "tok", 10) is True
        redis_client.eval.assert_awaited_with(
            COMPARE_AND_EXPIRE_SCRIPT, 1, "k", "tok", "10000"
        )

    async def test_increment(self, kv_store, redis_client):
        redis_client.eval.return_value = 7
        assert await kv_store.increment("fence", 2, ttl=60) == 7
        redis_client.eval.assert_awaited_with(
            INCREMENT_SCRIPT, 1, "fence", "2", "60000"
        )

        await kv_store.increment("fence")
        redis_client.eval.assert_awaited_with(INCREMENT_SCRIPT, 1, "fence", "1", "")

    @pytest.mark.parametrize(
        ("pttl", "expected"), [(-2, None), (-1, None), (2500, 2.5)]
    )
    async def test_ttl(self, kv_store, redis_client, pttl, expected):
        redis_client.pttl.return_value = pttl
        assert await kv_store.ttl("k") == expected

    async def test_delete(self, kv_store, redis_client):
        redis_client.delete.return_value = 1
        assert await kv_store.delete("k") is True
        redis_client.delete.return_value = 0
        assert await kv_store.delete("k") is False

    async def test_connection_errors_are_wrapped(self, kv_store, redis_client):
        redis_client.get.side_effect = redis_exceptions.ConnectionError("refused")
        with pytest.raises(RedisConnectionError) as exc_info:
            await kv_store.get("k")
        assert isinstance(exc_info.value, StoreError)
        assert isinstance(exc_info.value.__cause__, redis_exceptions.ConnectionError)

    async def test_command_errors_are_wrapped(self, kv_store, redis_client):
        redis_client.eval.side_effect = redis_exceptions.ResponseError("NOSCRIPT")
        with pytest.raises(RedisStoreError):
            await kv_store.compare_and_delete("k", "tok")

    async def test_health_check(self, kv_store, redis_client):
        redis_client.ping.return_value = True
        assert await kv_store.health_check() is True

        redis_client.ping.side_effect = redis_exceptions.ConnectionError("down")
        assert await kv_store.health_check() is False

    async def test_close(self, kv_store, redis_client):
        await kv_store.close()
        redis_client.aclose.assert_awaited_once()
