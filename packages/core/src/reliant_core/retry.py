"""RetryPolicy — exponential backoff, max attempts, jitter.

Retries only what :func:`is_retryable` allows: permanent failures and
open circuits stop the loop immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, TypeVar

from .primitives.exceptions import CircuitOpenError, PermanentError, ValidationError
from .timeouts import describe

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger("reliant.retry")


class RetryPolicy:
    """Configurable retry with exponential backoff and jitter."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 10.0,
        jitter: bool = True,
    ) -> None:
        """Configure retry behavior.

        Args:
            max_attempts: Maximum number of attempts (including first).
            base_delay: Initial delay in seconds before first retry.
            max_delay: Cap on delay in seconds.
            jitter: If True, add random jitter to delays to avoid thundering herd.
        """
        if max_attempts < 1:
            raise ValidationError({"max_attempts": ["must be >= 1"]})
        if base_delay < 0 or max_delay < 0:
            raise ValidationError("base_delay and max_delay must be >= 0")
        if base_delay > max_delay:
            raise ValidationError("base_delay must be <= max_delay")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

    def should_retry(self, attempt: int) -> bool:
        """Return True if another attempt is allowed (attempt is 1-based)."""
        return 1 <= attempt < self.max_attempts

    def delay_for_attempt(self, attempt: int) -> float:
        """Return delay in seconds after the given 1-based attempt.

        Uses exponential backoff: base_delay * 2^(attempt-1), capped by max_delay.
        If jitter is enabled, multiplies by a random factor in [0.5, 1.5].
        """
        if attempt < 1:
            return 0.0
        delay = min(
            self.base_delay * (2 ** (attempt - 1)),
            self.max_delay,
        )
        if self.jitter:
            delay = delay * (0.5 + random.random())  # noqa: S311
        return float(max(0.0, delay))


def is_retryable(exc: BaseException) -> bool:
    """Return False for failures that no retry can fix right now."""
    return isinstance(exc, Exception) and not isinstance(
        exc, (PermanentError, CircuitOpenError, ValidationError)
    )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """
    Call ``operation`` until it succeeds or the policy gives up.

    Raises:
        Exception: The last failure, unchanged. Non-retryable failures are
            raised on first occurrence.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc) or not policy.should_retry(attempt):
                raise
            delay = policy.delay_for_attempt(attempt)
            logger.info(
                "Attempt %d/%d of %s failed (%s); retrying in %.3fs",
                attempt,
                policy.max_attempts,
                describe(operation),
                type(exc).__name__,
                delay,
            )
            await asyncio.sleep(delay)
