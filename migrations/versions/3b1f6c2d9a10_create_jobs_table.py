"""create jobs table for the task pipeline

Revision ID: 3b1f6c2d9a10
Revises:
Create Date: 2026-10-16 09:12:41.118204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b1f6c2d9a10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Job-specific parameters",
        ),
        sa.Column(
            "state",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job state: pending|active|completed|failed",
        ),
        sa.Column(
            "attempt",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Failed executions so far",
        ),
        sa.Column(
            "max_attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="3",
            comment="Attempt budget",
        ),
        sa.Column(
            "enqueued_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "visible_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the job may be claimed",
        ),
        # Worker coordination fields
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Executor that holds the job"
        ),
        sa.Column(
            "locked_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When the job was claimed",
        ),
        # Outcome
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("result", sa.JSON, nullable=True, comment="Handler result data"),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "state IN ('pending', 'active', 'completed', 'failed')",
            name="jobs_state_check",
        ),
        sa.CheckConstraint("attempt <= max_attempts", name="jobs_attempt_check"),
    )

    # Claim order and retention sweeps
    op.create_index(
        "ix_jobs_state_visible_at", "jobs", ["state", "visible_at", "enqueued_at"]
    )
    op.create_index("ix_jobs_state_finished_at", "jobs", ["state", "finished_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_jobs_state_finished_at", table_name="jobs")
    op.drop_index("ix_jobs_state_visible_at", table_name="jobs")
    op.drop_table("jobs")
