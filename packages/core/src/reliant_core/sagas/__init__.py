"""Saga coordination: ordered steps with reverse-order compensation."""

from __future__ import annotations

from .coordinator import SagaConfig, SagaCoordinator, SagaStep
from .state import (
    CompensationFailure,
    SagaState,
    SagaStatus,
    StepEvent,
    StepRecord,
)

__all__ = [
    "CompensationFailure",
    "SagaConfig",
    "SagaCoordinator",
    "SagaState",
    "SagaStatus",
    "SagaStep",
    "StepEvent",
    "StepRecord",
]
