"""SagaCoordinator — ordered steps with reverse-order compensation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NoReturn, cast

from pydantic import BaseModel, Field

from ..correlation import get_correlation_id
from ..instrumentation import get_hook_registry
from ..primitives.exceptions import (
    SagaCompensationError,
    SagaConfigurationError,
    SagaFailedError,
)
from ..timeouts import call_with_timeout
from .state import CompensationFailure, SagaState, SagaStatus, StepEvent

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

logger = logging.getLogger("reliant.sagas")


@dataclass(frozen=True)
class SagaStep:
    """
    One forward action paired with the action that semantically undoes it.

    Attributes:
        name: Unique name within the saga.
        action: Zero-argument coroutine function.
        compensation: Coroutine function receiving the action's result.
            ``None`` for steps with nothing to undo (e.g. read-only checks).
        timeout: Bound for the action; falls back to ``SagaConfig.step_timeout``.

    Example::

        SagaStep(
            name="reserve_stock",
            action=lambda: inventory.reserve(order_id, items),
            compensation=lambda reservation: inventory.release(reservation.id),
        )
    """

    name: str
    action: Callable[[], Awaitable[Any]]
    compensation: Callable[[Any], Awaitable[Any]] | None = None
    timeout: float | None = None


class SagaConfig(BaseModel):
    """Configuration for :class:`SagaCoordinator`."""

    step_timeout: float | None = Field(default=30.0, gt=0)
    compensation_timeout: float | None = Field(default=30.0, gt=0)


class SagaCoordinator:
    """
    Runs saga steps in order; on the first failure undoes completed steps.

    Lifecycle
    ---------
    * ``RUNNING → SUCCEEDED`` — every action completed; ``run`` returns the state.
    * ``RUNNING → COMPENSATING → COMPENSATED`` — raises :class:`SagaFailedError`.
    * ``RUNNING → COMPENSATING → COMPENSATION_FAILED`` — raises
      :class:`SagaCompensationError`; the state lists every failed
      compensation for manual remediation. Nothing is retried automatically.

    The failed step's own compensation never runs: its action did not
    complete. Cancellation of ``run`` counts as a step failure; completed
    steps are compensated before ``CancelledError`` propagates. Cancelling
    ``run`` again while it compensates does not interrupt the compensations:
    they all run to completion and the cancellation is raised afterwards.
    """

    def __init__(self, config: SagaConfig | None = None) -> None:
        self.config = config or SagaConfig()

    @staticmethod
    def _validate(steps: Sequence[SagaStep]) -> None:
        if not steps:
            raise SagaConfigurationError({"steps": ["a saga needs at least one step"]})
        seen: set[str] = set()
        for step in steps:
            if not step.name:
                raise SagaConfigurationError(
                    {"steps": ["step names must be non-empty"]}
                )
            if step.name in seen:
                raise SagaConfigurationError(
                    {"steps": [f"duplicate step name '{step.name}'"]}
                )
            if step.timeout is not None and step.timeout <= 0:
                raise SagaConfigurationError(
                    {"steps": [f"timeout of step '{step.name}' must be positive"]}
                )
            seen.add(step.name)

    async def run(
        self,
        steps: Sequence[SagaStep],
        *,
        saga_id: str | None = None,
    ) -> SagaState:
        """
        Execute ``steps`` as one saga.

        Returns:
            The SUCCEEDED state.

        Raises:
            SagaConfigurationError: Empty step list or invalid step names.
            SagaFailedError: A step failed; all completed steps compensated.
            SagaCompensationError: A step failed and some compensation failed.
            asyncio.CancelledError: The run was cancelled (after compensation).
        """
        self._validate(steps)
        state = SagaState(
            saga_id=saga_id or str(uuid.uuid4()),
            correlation_id=get_correlation_id(),
        )
        registry = get_hook_registry()
        return cast(
            "SagaState",
            await registry.execute_all(
                "saga.run",
                {
                    "saga_id": state.saga_id,
                    "steps": [step.name for step in steps],
                    "correlation_id": state.correlation_id,
                },
                lambda: self._run_internal(list(steps), state),
            ),
        )

    async def _run_internal(self, steps: list[SagaStep], state: SagaState) -> SagaState:
        results: dict[str, Any] = {}
        logger.info("Saga %s started with %d steps", state.saga_id, len(steps))

        for step in steps:
            state.record(step.name, StepEvent.ACTION_STARTED)
            try:
                results[step.name] = await call_with_timeout(
                    step.action,
                    (
                        step.timeout
                        if step.timeout is not None
                        else self.config.step_timeout
                    ),
                    name=f"saga step '{step.name}'",
                )
            except (Exception, asyncio.CancelledError) as exc:
                state.failed_step = step.name
                state.error = f"{type(exc).__name__}: {exc}"
                state.record(step.name, StepEvent.ACTION_FAILED, state.error)
                logger.warning(
                    "Saga %s step '%s' failed: %s",
                    state.saga_id,
                    step.name,
                    state.error,
                )
                await self._compensate(steps, results, state, exc)
            else:
                state.completed_steps.append(step.name)
                state.record(step.name, StepEvent.ACTION_SUCCEEDED)

        state.finish(SagaStatus.SUCCEEDED)
        logger.info("Saga %s succeeded", state.saga_id)
        return state

    async def _compensate(
        self,
        steps: list[SagaStep],
        results: dict[str, Any],
        state: SagaState,
        error: BaseException,
    ) -> NoReturn:
        """Run compensations in reverse order, then raise the terminal error."""
        state.status = SagaStatus.COMPENSATING
        by_name = {step.name: step for step in steps}
        compensation_errors: dict[str, BaseException] = {}
        cancel_requested = False

        for name in reversed(state.completed_steps):
            step = by_name[name]
            if step.compensation is None:
                state.record(name, StepEvent.COMPENSATION_SKIPPED)
                continue
            exc, cancelled = await self._run_compensation(
                name, step.compensation, results.get(name)
            )
            cancel_requested = cancel_requested or cancelled
            if exc is not None:
                compensation_errors[name] = exc
                state.failed_compensations.append(
                    CompensationFailure(
                        step_name=name,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                )
                state.record(name, StepEvent.COMPENSATION_FAILED, str(exc))
                logger.error(
                    "Saga %s: compensation for step '%s' failed: %s",
                    state.saga_id,
                    name,
                    exc,
                )
            else:
                state.record(name, StepEvent.COMPENSATION_SUCCEEDED)

        failed_step = cast("str", state.failed_step)
        if compensation_errors:
            state.finish(SagaStatus.COMPENSATION_FAILED)
            logger.error(
                "Saga %s is partially compensated (%d compensation failures); "
                "manual intervention required",
                state.saga_id,
                len(compensation_errors),
            )
        else:
            state.finish(SagaStatus.COMPENSATED)
            logger.info("Saga %s compensated", state.saga_id)

        if isinstance(error, asyncio.CancelledError):
            raise error
        if cancel_requested:
            raise asyncio.CancelledError

        if compensation_errors:
            raise SagaCompensationError(
                f"Saga {state.saga_id} failed at step '{failed_step}' and "
                f"{len(compensation_errors)} compensation(s) failed",
                state=state,
                failed_step=failed_step,
                error=error,
                compensation_errors=compensation_errors,
            ) from error
        raise SagaFailedError(
            f"Saga {state.saga_id} failed at step '{failed_step}'; "
            "completed steps were compensated",
            state=state,
            failed_step=failed_step,
            error=error,
        ) from error

    async def _run_compensation(
        self,
        name: str,
        compensation: Callable[[Any], Awaitable[Any]],
        result: Any,
    ) -> tuple[BaseException | None, bool]:
        """
        Run one compensation to completion, even if the caller is cancelled.

        Returns:
            The compensation's failure (``None`` on success) and whether a
            cancellation of the caller arrived while it ran.
        """
        task = asyncio.ensure_future(
            call_with_timeout(
                lambda: compensation(result),
                self.config.compensation_timeout,
                name=f"compensation for '{name}'",
            )
        )
        cancel_requested = False
        while not task.done():
            try:
                # asyncio.wait never cancels the task it waits on.
                await asyncio.wait({task})
            except asyncio.CancelledError:
                cancel_requested = True

        if task.cancelled():
            error: BaseException | None = asyncio.CancelledError(
                f"compensation for '{name}' was cancelled"
            )
        else:
            error = task.exception()
        return error, cancel_requested
