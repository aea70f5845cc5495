"""Idempotency guard: exactly-once effect for retried operations."""

from __future__ import annotations

from .guard import IdempotencyConfig, IdempotencyGuard, idempotency_key
from .records import CompletedRecord, IdempotencyRecord, InProgressRecord

__all__ = [
    "CompletedRecord",
    "IdempotencyConfig",
    "IdempotencyGuard",
    "IdempotencyRecord",
    "InProgressRecord",
    "idempotency_key",
]
