"""
Typed job payloads.

Each job type owns one payload model; ``JobPayload`` is the union the
dispatch loop matches on.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from taskqueue.core.exceptions import ValidationFailure
from taskqueue.jobs.models import JobType


class StatusUpdatePayload(BaseModel):
    """Propagate a task status change."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    task_id: str = Field(..., min_length=1, alias="taskId")
    status: str = Field(..., min_length=1)


class OverdueNotificationPayload(BaseModel):
    """Send one notification per overdue task."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    overdue_task_ids: list[str] = Field(default_factory=list, alias="overdueTaskIds")


class BulkStatusUpdatePayload(BaseModel):
    """Mark every listed task completed in one statement."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    task_ids: list[str] = Field(..., min_length=1, alias="taskIds")


JobPayload = StatusUpdatePayload | OverdueNotificationPayload | BulkStatusUpdatePayload

PAYLOAD_MODELS: dict[JobType, type[BaseModel]] = {
    JobType.STATUS_UPDATE: StatusUpdatePayload,
    JobType.OVERDUE_NOTIFICATION: OverdueNotificationPayload,
    JobType.BULK_STATUS_UPDATE: BulkStatusUpdatePayload,
}


def dump_payload(payload: JobPayload) -> dict[str, Any]:
    """Serialize a payload for the ``jobs.payload`` column."""
    return payload.model_dump(by_alias=True, mode="json")


def job_type_for(payload: JobPayload) -> JobType:
    match payload:
        case StatusUpdatePayload():
            return JobType.STATUS_UPDATE
        case OverdueNotificationPayload():
            return JobType.OVERDUE_NOTIFICATION
        case BulkStatusUpdatePayload():
            return JobType.BULK_STATUS_UPDATE
    raise TypeError(f"Unsupported payload: {type(payload).__name__}")


def parse_payload(job_type: JobType, raw: dict[str, Any] | None) -> JobPayload:
    """Decode a stored payload, raising ValidationFailure when it is malformed."""
    model = PAYLOAD_MODELS[job_type]
    try:
        return model.model_validate(raw or {})
    except PydanticValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ValidationFailure(
            f"Invalid {job_type.value} payload: {', '.join(missing) or 'malformed'}",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e
