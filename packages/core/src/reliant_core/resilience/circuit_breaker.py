"""Circuit breaker — local call-admission control for a failing dependency.

State machine::

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(recovery_timeout since last failure)--> HALF_OPEN
    HALF_OPEN --(trial succeeds)--> CLOSED
    HALF_OPEN --(trial fails)--> OPEN

Only calls admitted since the last transition move the state machine. A
call that finishes after the state changed under it updates the statistics
only.

Counters live in this process only. They are guarded by a
``threading.Lock`` that is never held across an ``await``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar, cast

from pydantic import BaseModel, Field

from ..correlation import get_correlation_id
from ..instrumentation import get_hook_registry
from ..primitives.exceptions import CircuitOpenError
from ..timeouts import call_with_timeout, describe

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger("reliant.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfig(BaseModel):
    """
    Circuit breaker configuration.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds after the last failure before a trial call.
        call_timeout: Bound for each wrapped call (``None`` = unbounded).
    """

    failure_threshold: int = Field(default=5, gt=0)
    recovery_timeout: float = Field(default=30.0, gt=0)
    call_timeout: float | None = Field(default=None, gt=0)


class CircuitBreaker:
    """
    Fails fast while a dependency is unhealthy.

    Example:
        ```python
        breaker = CircuitBreaker("payments", CircuitBreakerConfig(failure_threshold=3))

        try:
            receipt = await breaker.execute(gateway.charge, order_id, amount)
        except CircuitOpenError as exc:
            return retry_later(exc.retry_after)
        ```
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._trial_in_flight = False
        # Bumped on every transition; outcomes of calls admitted under an
        # older generation only update the statistics.
        self._generation = 0
        self._lock = threading.Lock()
        self._listeners: list[Callable[[str, CircuitState, CircuitState], None]] = []

        # Statistics
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejections = 0
        self._state_changes = 0

    @property
    def state(self) -> CircuitState:
        """Current state (an OPEN breaker past its timeout still reports OPEN)."""
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures counted so far."""
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        """Clock reading of the most recent failure."""
        return self._last_failure_time

    def add_listener(
        self, listener: Callable[[str, CircuitState, CircuitState], None]
    ) -> None:
        """Register ``listener(name, old_state, new_state)`` for transitions."""
        self._listeners.append(listener)

    async def execute(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Call ``operation(*args, **kwargs)`` if the circuit admits it.

        Raises:
            CircuitOpenError: The circuit is open (or a half-open trial is
                already running); ``operation`` was not called.
            OperationTimeoutError: The call exceeded ``call_timeout``.
            Exception: Any failure of ``operation``, after it was counted.
        """
        registry = get_hook_registry()
        return cast(
            "T",
            await registry.execute_all(
                "circuit_breaker.call",
                {
                    "breaker": self.name,
                    "state": self._state.value,
                    "correlation_id": get_correlation_id(),
                },
                lambda: self._execute_internal(operation, *args, **kwargs),
            ),
        )

    async def _execute_internal(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        transitions: list[tuple[CircuitState, CircuitState]] = []
        with self._lock:
            self._total_calls += 1
            rejection, generation = self._admit(transitions)
        self._notify(transitions)
        if rejection is not None:
            raise rejection

        try:
            result = await call_with_timeout(
                lambda: operation(*args, **kwargs),
                self.config.call_timeout,
                name=f"{self.name}:{describe(operation)}",
            )
        except (Exception, asyncio.CancelledError) as exc:
            self._on_failure(exc, generation)
            raise
        self._on_success(generation)
        return result

    def _admit(
        self, transitions: list[tuple[CircuitState, CircuitState]]
    ) -> tuple[CircuitOpenError | None, int]:
        """Decide admission. Returns the rejection to raise and the generation."""
        if self._state == CircuitState.CLOSED:
            return None, self._generation

        if self._state == CircuitState.OPEN:
            remaining = self._remaining_recovery()
            if remaining > 0:
                self._total_rejections += 1
                return (
                    CircuitOpenError(self.name, self._failure_count, remaining),
                    self._generation,
                )
            self._transition(CircuitState.HALF_OPEN, transitions)

        # HALF_OPEN: exactly one trial at a time.
        if self._trial_in_flight:
            self._total_rejections += 1
            return (
                CircuitOpenError(self.name, self._failure_count, 0.0),
                self._generation,
            )
        self._trial_in_flight = True
        return None, self._generation

    def _remaining_recovery(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.config.recovery_timeout - elapsed)

    def _on_success(self, generation: int) -> None:
        transitions: list[tuple[CircuitState, CircuitState]] = []
        with self._lock:
            self._total_successes += 1
            if generation != self._generation:
                # Admitted before the last transition; statistics only.
                return
            if self._state == CircuitState.CLOSED:
                self._failure_count = 0
            elif self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._failure_count = 0
                self._last_failure_time = None
                self._transition(CircuitState.CLOSED, transitions)
        self._notify(transitions)

    def _on_failure(self, exc: BaseException, generation: int) -> None:
        transitions: list[tuple[CircuitState, CircuitState]] = []
        with self._lock:
            self._total_failures += 1
            if generation != self._generation:
                logger.debug(
                    "Circuit %s ignored failure from an earlier state (%s)",
                    self.name,
                    type(exc).__name__,
                )
                return
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    self._transition(CircuitState.OPEN, transitions)
            elif self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition(CircuitState.OPEN, transitions)
        logger.debug(
            "Circuit %s recorded failure %d (%s)",
            self.name,
            self._failure_count,
            type(exc).__name__,
        )
        self._notify(transitions)

    def _transition(
        self,
        new_state: CircuitState,
        transitions: list[tuple[CircuitState, CircuitState]],
    ) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._state_changes += 1
        self._generation += 1
        transitions.append((old_state, new_state))

    def _notify(self, transitions: list[tuple[CircuitState, CircuitState]]) -> None:
        """Log and publish transitions (called without the lock held)."""
        for old_state, new_state in transitions:
            if new_state == CircuitState.OPEN:
                logger.warning(
                    "Circuit %s OPEN after %d failures (recovery in %.1fs)",
                    self.name,
                    self._failure_count,
                    self.config.recovery_timeout,
                )
            else:
                logger.info(
                    "Circuit %s %s -> %s",
                    self.name,
                    old_state.value,
                    new_state.value,
                )
            for listener in self._listeners:
                try:
                    listener(self.name, old_state, new_state)
                except Exception:  # noqa: BLE001
                    logger.exception(
                        "Circuit %s state listener %r failed", self.name, listener
                    )

    def reset(self) -> None:
        """Manually close the circuit (administrative control or testing)."""
        transitions: list[tuple[CircuitState, CircuitState]] = []
        with self._lock:
            self._failure_count = 0
            self._last_failure_time = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED, transitions)
        self._notify(transitions)

    def trip(self) -> None:
        """Manually open the circuit; the recovery timer starts now."""
        transitions: list[tuple[CircuitState, CircuitState]] = []
        with self._lock:
            self._failure_count = max(
                self._failure_count, self.config.failure_threshold
            )
            self._last_failure_time = self._clock()
            self._trial_in_flight = False
            self._transition(CircuitState.OPEN, transitions)
        self._notify(transitions)

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of state, counters and configuration."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "total_calls": self._total_calls,
                "total_failures": self._total_failures,
                "total_successes": self._total_successes,
                "total_rejections": self._total_rejections,
                "state_changes": self._state_changes,
                "config": self.config.model_dump(),
            }


class CircuitBreakerRegistry:
    """One breaker per dependency name, created on first use."""

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        """Return the breaker for ``name``; ``config`` only applies on creation."""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name, config or self._default_config, clock=self._clock
                )
                self._breakers[name] = breaker
            return breaker

    def all(self) -> list[CircuitBreaker]:
        """Every breaker created so far."""
        with self._lock:
            return list(self._breakers.values())

    def reset_all(self) -> None:
        """Close every circuit."""
        for breaker in self.all():
            breaker.reset()
