"""
Pydantic schemas for the job admin API.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    payload: dict[str, Any]
    state: str
    attempt: int
    max_attempts: int
    enqueued_at: datetime
    visible_at: datetime

    # Worker coordination
    locked_by: str | None = None
    locked_at: datetime | None = None

    # Outcome
    finished_at: datetime | None = None
    result: dict[str, Any] | None = None
    last_error: str | None = None
    updated_at: datetime


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total_jobs: int
    by_state: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int = Field(description="pending + active")
    retry_scheduled: int = Field(description="pending jobs that already failed once")


class JobActionResponse(BaseModel):
    """Schema for retry/cancel responses."""

    job_id: UUID
    accepted: bool
    state: str | None = None
