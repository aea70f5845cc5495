"""reliant-core — failure-handling primitives for distributed systems.

Idempotency guard, saga coordinator, distributed lock and circuit breaker,
built on an abstract key-value store port. No infrastructure dependencies
beyond pydantic.
"""

from __future__ import annotations

# ── Adapters ────────────────────────────────────────────────────
from .adapters.memory import InMemoryKeyValueStore
from .context import ReliantContext
from .correlation import (
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)

# ── Patterns ─────────────────────────────────────────────────────
from .idempotency import IdempotencyConfig, IdempotencyGuard, idempotency_key
from .instrumentation import (
    HookRegistry,
    InstrumentationHook,
    get_hook_registry,
    set_hook_registry,
)
from .locking import DistributedLock, LockConfig, fencing_number
from .observability import StructuredLoggingHook
from .ports import IKeyValueStore

# ── Primitives ───────────────────────────────────────────────────
from .primitives import (
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
from .resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
)
from .retry import RetryPolicy, is_retryable, retry_async
from .sagas import SagaConfig, SagaCoordinator, SagaState, SagaStatus, SagaStep
from .timeouts import call_with_timeout

__all__ = [
    # Adapters / context
    "InMemoryKeyValueStore",
    "ReliantContext",
    "IKeyValueStore",
    # Correlation / instrumentation
    "correlation_scope",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    "HookRegistry",
    "InstrumentationHook",
    "get_hook_registry",
    "set_hook_registry",
    "StructuredLoggingHook",
    # Patterns
    "IdempotencyConfig",
    "IdempotencyGuard",
    "idempotency_key",
    "DistributedLock",
    "LockConfig",
    "fencing_number",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "SagaConfig",
    "SagaCoordinator",
    "SagaState",
    "SagaStatus",
    "SagaStep",
    "RetryPolicy",
    "is_retryable",
    "retry_async",
    "call_with_timeout",
    # Errors
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
