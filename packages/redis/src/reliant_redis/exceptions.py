"""Redis-specific exceptions for reliant-redis."""

from __future__ import annotations

from reliant_core.primitives.exceptions import StoreError


class RedisStoreError(StoreError):
    """Raised when a Redis command issued by the key-value store fails."""


class RedisConnectionError(RedisStoreError):
    """Raised when connectivity to Redis fails."""
