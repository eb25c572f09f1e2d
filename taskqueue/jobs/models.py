"""
Job model for the background pipeline.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    CheckConstraint,
    Index,
    SmallInteger,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from taskqueue.infra.database import Base


class JobType(str, Enum):
    """Job type enumeration. Values are the strings stored in ``jobs.type``."""

    STATUS_UPDATE = "task-status-update"
    OVERDUE_NOTIFICATION = "overdue-tasks-notification"
    BULK_STATUS_UPDATE = "bulk-status-update"


class JobState(str, Enum):
    """Job state enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(Base):
    """
    A durable unit of deferred work.

    - ``visible_at`` is the earliest time a pending job may be claimed;
      it equals ``enqueued_at`` for new jobs and moves forward on retry
    - ``locked_by``/``locked_at`` identify the executor holding an active job
    - ``attempt`` counts failed executions and never exceeds ``max_attempts``
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Job-specific parameters"
    )

    # Job state
    state: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobState.PENDING.value,
        comment="Job state: pending|active|completed|failed",
    )
    attempt: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Failed executions so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempt budget"
    )
    enqueued_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    visible_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        comment="Earliest time the job may be claimed",
    )

    # Worker coordination
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Executor that holds the job"
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When the job was claimed"
    )

    # Outcome
    finished_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler result data"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        CheckConstraint(
            "state IN ('pending', 'active', 'completed', 'failed')",
            name="jobs_state_check",
        ),
        CheckConstraint("attempt <= max_attempts", name="jobs_attempt_check"),
        Index("ix_jobs_state_visible_at", "state", "visible_at", "enqueued_at"),
        Index("ix_jobs_state_finished_at", "state", "finished_at"),
    )

    def is_terminal(self) -> bool:
        return self.state in (JobState.COMPLETED.value, JobState.FAILED.value)

    def job_type(self) -> JobType | None:
        """The typed job type, or None for a type this build does not know."""
        try:
            return JobType(self.type)
        except ValueError:
            return None
