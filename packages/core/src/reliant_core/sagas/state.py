"""Saga state model tracked for one run of a coordinator."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SagaStatus(str, Enum):
    """Possible lifecycle states for a saga run."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    COMPENSATING = "COMPENSATING"
    COMPENSATED = "COMPENSATED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


class StepEvent(str, Enum):
    """What happened to a step."""

    ACTION_STARTED = "ACTION_STARTED"
    ACTION_SUCCEEDED = "ACTION_SUCCEEDED"
    ACTION_FAILED = "ACTION_FAILED"
    COMPENSATION_SUCCEEDED = "COMPENSATION_SUCCEEDED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"
    COMPENSATION_SKIPPED = "COMPENSATION_SKIPPED"


class StepRecord(BaseModel):
    """Immutable record of a single step transition."""

    model_config = ConfigDict(frozen=True)

    step_name: str
    event: StepEvent
    occurred_at: datetime = Field(default_factory=_now)
    detail: str | None = None


class CompensationFailure(BaseModel):
    """A compensation that raised; the step it belongs to needs remediation."""

    model_config = ConfigDict(frozen=True)

    step_name: str
    error_type: str
    error: str
    failed_at: datetime = Field(default_factory=_now)


class SagaState(BaseModel):
    """
    Serialisable record of one saga run.

    ``completed_steps`` lists the steps whose action succeeded, in execution
    order; compensation walks it backwards.
    """

    saga_id: str
    status: SagaStatus = SagaStatus.RUNNING
    completed_steps: list[str] = Field(default_factory=list)
    step_history: list[StepRecord] = Field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    failed_compensations: list[CompensationFailure] = Field(default_factory=list)
    correlation_id: str | None = None
    started_at: datetime = Field(default_factory=_now)
    finished_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def record(
        self, step_name: str, event: StepEvent, detail: str | None = None
    ) -> None:
        """Append a step record."""
        self.step_history.append(
            StepRecord(step_name=step_name, event=event, detail=detail)
        )

    def finish(self, status: SagaStatus) -> None:
        """Move to a terminal status and stamp ``finished_at``."""
        self.status = status
        self.finished_at = _now()

    @property
    def is_terminal(self) -> bool:
        """Return *True* if the saga has reached a final state."""
        return self.status in (
            SagaStatus.SUCCEEDED,
            SagaStatus.COMPENSATED,
            SagaStatus.COMPENSATION_FAILED,
        )

    @property
    def requires_intervention(self) -> bool:
        """Return *True* when the run ended partially compensated."""
        return self.status == SagaStatus.COMPENSATION_FAILED
