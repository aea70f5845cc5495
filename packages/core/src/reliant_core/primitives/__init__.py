"""Primitives: exceptions and failure classification."""

from __future__ import annotations

from .exceptions import (
    CircuitOpenError,
    ConcurrencyError,
    IdempotencyInProgressError,
    IdempotencyRecordError,
    InfrastructureError,
    LockAcquisitionError,
    OperationTimeoutError,
    PermanentError,
    ReliantError,
    SagaCompensationError,
    SagaConfigurationError,
    SagaError,
    SagaFailedError,
    StoreError,
    TransientError,
    ValidationError,
)

__all__ = [
    "CircuitOpenError",
    "ConcurrencyError",
    "IdempotencyInProgressError",
    "IdempotencyRecordError",
    "InfrastructureError",
    "LockAcquisitionError",
    "OperationTimeoutError",
    "PermanentError",
    "ReliantError",
    "SagaCompensationError",
    "SagaConfigurationError",
    "SagaError",
    "SagaFailedError",
    "StoreError",
    "TransientError",
    "ValidationError",
]
