"""Error taxonomy for reliant-core.

Callers branch on the class, never on the message:

* :class:`TransientError` — may succeed on retry.
* :class:`PermanentError` — retrying is pointless.
* :class:`CircuitOpenError` — rejected without calling the dependency.
* :class:`SagaCompensationError` — the system was left inconsistent.

Lock contention is deliberately absent: ``acquire`` returns ``None``.
"""

from __future__ import annotations


class ReliantError(Exception):
    """Root exception for the entire reliant toolkit."""


class ValidationError(ReliantError):
    """Raised when arguments or configuration are invalid.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


# ── Failure classification ───────────────────────────────────────────


class TransientError(ReliantError):
    """An operation failed but may succeed if attempted again."""


class OperationTimeoutError(TransientError):
    """An external call did not complete within its time bound."""

    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout}s")


class PermanentError(ReliantError):
    """An operation failed in a way no retry can fix (e.g. invalid input)."""


class CircuitOpenError(ReliantError):
    """Raised when a circuit breaker rejects a call without executing it.

    Signals "do not retry yet"; ``retry_after`` is the number of seconds
    until the breaker admits a trial call.
    """

    def __init__(
        self,
        breaker_name: str,
        failure_count: int,
        retry_after: float,
    ) -> None:
        self.breaker_name = breaker_name
        self.failure_count = failure_count
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{breaker_name}' is OPEN "
            f"({failure_count} failures). Retry after {retry_after:.1f}s."
        )


# ── Concurrency ──────────────────────────────────────────────────────


class ConcurrencyError(ReliantError):
    """Base class for coordination conflicts between independent callers."""


class LockAcquisitionError(ConcurrencyError):
    """Raised by ``DistributedLock.hold`` when the lock could not be taken."""

    def __init__(self, resource_key: str, wait_timeout: float) -> None:
        self.resource_key = resource_key
        self.wait_timeout = wait_timeout
        super().__init__(
            f"Failed to acquire lock on {resource_key!r} within {wait_timeout}s"
        )


class IdempotencyInProgressError(ConcurrencyError):
    """Another caller holds the claim for this idempotency key."""

    def __init__(self, key: str, waited: float) -> None:
        self.key = key
        self.waited = waited
        super().__init__(
            f"Operation for idempotency key {key!r} is still in progress "
            f"(waited {waited:.2f}s)"
        )


# ── Infrastructure ───────────────────────────────────────────────────


class InfrastructureError(ReliantError):
    """Base class for all infrastructure-related errors."""


class StoreError(InfrastructureError):
    """Raised when the shared key-value store fails."""


class IdempotencyRecordError(InfrastructureError):
    """A stored idempotency record could not be parsed."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt idempotency record for {key!r}: {reason}")


# ── Sagas ────────────────────────────────────────────────────────────


class SagaError(ReliantError):
    """Base class for saga errors."""


class SagaConfigurationError(SagaError, ValidationError):
    """Raised when a saga definition is invalid (no steps, duplicate names)."""


class SagaFailedError(SagaError):
    """A saga step failed and every completed step was compensated.

    The original failure is available as :attr:`error` and ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        state: object,
        failed_step: str,
        error: BaseException,
    ) -> None:
        self.state = state
        self.failed_step = failed_step
        self.error = error
        super().__init__(message)


class SagaCompensationError(SagaFailedError):
    """A saga step failed and at least one compensation failed too.

    The saga is partially compensated; manual intervention is required.
    """

    def __init__(
        self,
        message: str,
        *,
        state: object,
        failed_step: str,
        error: BaseException,
        compensation_errors: dict[str, BaseException],
    ) -> None:
        self.compensation_errors = compensation_errors
        super().__init__(message, state=state, failed_step=failed_step, error=error)
