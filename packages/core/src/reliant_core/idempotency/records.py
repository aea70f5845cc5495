"""Tagged idempotency records stored as JSON in the key-value store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..primitives.exceptions import IdempotencyRecordError


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InProgressRecord(BaseModel):
    """Claim written before the operation runs. ``owner`` is unique per attempt."""

    model_config = ConfigDict(frozen=True)

    status: Literal["in_progress"] = "in_progress"
    owner: str
    created_at: datetime = Field(default_factory=_now)


class CompletedRecord(BaseModel):
    """Stored result of the first successful attempt."""

    model_config = ConfigDict(frozen=True)

    status: Literal["completed"] = "completed"
    result: Any = None
    created_at: datetime = Field(default_factory=_now)
    completed_at: datetime = Field(default_factory=_now)


IdempotencyRecord = Annotated[
    Union[InProgressRecord, CompletedRecord], Field(discriminator="status")
]

_record_adapter: TypeAdapter[InProgressRecord | CompletedRecord] = TypeAdapter(
    IdempotencyRecord
)


def parse_record(key: str, raw: str) -> InProgressRecord | CompletedRecord:
    """Validate a stored record, raising IdempotencyRecordError when corrupt."""
    try:
        return _record_adapter.validate_json(raw)
    except PydanticValidationError as exc:
        raise IdempotencyRecordError(key, str(exc)) from exc
