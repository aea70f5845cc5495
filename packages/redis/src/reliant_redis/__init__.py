"""Redis adapter for reliant-core's key-value store port."""

from __future__ import annotations

from .exceptions import RedisConnectionError, RedisStoreError
from .kv_store import RedisKeyValueStore

__all__ = [
    "RedisKeyValueStore",
    "RedisStoreError",
    "RedisConnectionError",
]
