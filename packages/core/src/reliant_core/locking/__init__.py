"""Distributed locking over the shared key-value store."""

from __future__ import annotations

from .distributed_lock import DistributedLock, LockConfig, fencing_number

__all__ = [
    "DistributedLock",
    "LockConfig",
    "fencing_number",
]
