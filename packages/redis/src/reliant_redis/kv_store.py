"""Redis implementation of IKeyValueStore.

Conditional operations run as Lua scripts so the comparison and the write
happen in one atomic step on the server. TTLs are sent in milliseconds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from redis import exceptions as redis_exceptions

from reliant_core.ports.kv_store import IKeyValueStore

from .exceptions import RedisConnectionError, RedisStoreError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from redis.asyncio import Redis

T = TypeVar("T")

logger = logging.getLogger("reliant.redis")

# KEYS: [key]  ARGV: [expected]
COMPARE_AND_DELETE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

# KEYS: [key]  ARGV: [expected, value, ttl_ms or ""]
COMPARE_AND_SET_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    if ARGV[3] ~= "" then
        redis.call("SET", KEYS[1], ARGV[2], "PX", ARGV[3])
    else
        redis.call("SET", KEYS[1], ARGV[2])
    end
    return 1
end
return 0
"""

# KEYS: [key]  ARGV: [expected, ttl_ms]
COMPARE_AND_EXPIRE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
return 0
"""

# KEYS: [key]  ARGV: [amount, ttl_ms or ""]
INCREMENT_SCRIPT = """
local existed = redis.call("EXISTS", KEYS[1])
local value = redis.call("INCRBY", KEYS[1], ARGV[1])
if existed == 0 and ARGV[2] ~= "" then
    redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
return value
"""


def _ttl_ms(ttl: float | None) -> int | None:
    if ttl is None:
        return None
    if ttl <= 0:
        raise RedisStoreError(f"TTL must be positive, got {ttl!r}")
    return max(1, int(ttl * 1000))


def _decode(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


class RedisKeyValueStore(IKeyValueStore):
    """
    Key-value store backed by a single Redis instance.

    Works with clients created with or without ``decode_responses``.

    Example:
        ```python
        store = RedisKeyValueStore.from_url("redis://localhost:6379/0")
        lock = DistributedLock(store)
        ```
    """

    def __init__(self, redis: Redis) -> None:  # type: ignore[type-arg]
        """
        Initialize RedisKeyValueStore.

        Args:
            redis: An initialized redis.asyncio.Redis client.
        """
        self._redis = redis

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisKeyValueStore:
        """Create a store with its own client connected to ``url``."""
        from redis.asyncio import Redis

        return cls(Redis.from_url(url, **kwargs))

    async def _run(
        self, command: str, key: str, call: Callable[[], Awaitable[T]]
    ) -> T:
        try:
            return await call()
        except redis_exceptions.ConnectionError as exc:
            logger.warning("Redis %s failed for key %s: %s", command, key, exc)
            raise RedisConnectionError(
                f"Redis {command} failed for key {key!r}: {exc}"
            ) from exc
        except redis_exceptions.RedisError as exc:
            logger.warning("Redis %s failed for key %s: %s", command, key, exc)
            raise RedisStoreError(
                f"Redis {command} failed for key {key!r}: {exc}"
            ) from exc

    async def _eval(self, command: str, script: str, key: str, *args: str) -> int:
        result = await self._run(
            command,
            key,
            lambda: self._redis.eval(  # type: ignore[no-untyped-call]
                script, 1, key, *args
            ),
        )
        return int(_decode(result))

    async def get(self, key: str) -> str | None:
        value = await self._run("GET", key, lambda: self._redis.get(key))
        return _decode(value)

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        px = _ttl_ms(ttl)
        await self._run("SET", key, lambda: self._redis.set(key, value, px=px))

    async def set_if_absent(
        self, key: str, value: str, ttl: float | None = None
    ) -> bool:
        px = _ttl_ms(ttl)
        result = await self._run(
            "SET NX", key, lambda: self._redis.set(key, value, nx=True, px=px)
        )
        return bool(result)

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        return (
            await self._eval("CAD", COMPARE_AND_DELETE_SCRIPT, key, expected)
        ) == 1

    async def compare_and_set(
        self,
        key: str,
        expected: str,
        value: str,
        ttl: float | None = None,
    ) -> bool:
        px = _ttl_ms(ttl)
        result = await self._eval(
            "CAS",
            COMPARE_AND_SET_SCRIPT,
            key,
            expected,
            value,
            "" if px is None else str(px),
        )
        return result == 1

    async def compare_and_expire(self, key: str, expected: str, ttl: float) -> bool:
        px = _ttl_ms(ttl)
        result = await self._eval(
            "CAE", COMPARE_AND_EXPIRE_SCRIPT, key, expected, str(px)
        )
        return result == 1

    async def increment(
        self, key: str, amount: int = 1, ttl: float | None = None
    ) -> int:
        px = _ttl_ms(ttl)
        return await self._eval(
            "INCRBY",
            INCREMENT_SCRIPT,
            key,
            str(amount),
            "" if px is None else str(px),
        )

    async def ttl(self, key: str) -> float | None:
        raw = await self._run("PTTL", key, lambda: self._redis.pttl(key))
        remaining = int(raw)
        # -2: missing, -1: no expiry
        if remaining < 0:
            return None
        return remaining / 1000.0

    async def delete(self, key: str) -> bool:
        removed = await self._run("DEL", key, lambda: self._redis.delete(key))
        return int(removed) > 0

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as exc:  # noqa: BLE001
            logger.error("Redis health check failed: %s", exc)
            return False

    async def close(self) -> None:
        await self._redis.aclose()
