"""create jobs table for the durable job queue

Revision ID: 3b7e1c92a4d0
Revises:
Create Date: 2026-10-19 09:12:31.518204

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1c92a4d0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Processor-specific parameters",
        ),
        sa.Column(
            "requested_by", sa.Text, nullable=True, comment="Submitting user"
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="queued",
            comment="Job status: queued|processing|completed|failed|cancelled",
        ),
        sa.Column(
            "priority",
            sa.SmallInteger,
            nullable=False,
            server_default="5",
            comment="Priority 1-10, lower is higher priority",
        ),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the job may be claimed",
        ),
        sa.Column(
            "attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Number of claims made",
        ),
        sa.Column(
            "max_attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="3",
            comment="Claims allowed in total",
        ),
        sa.Column(
            "timeout_ms",
            sa.Integer,
            nullable=True,
            comment="Per-attempt processing timeout",
        ),
        # Results and progress
        sa.Column(
            "progress",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Progress 0-100",
        ),
        sa.Column("result", sa.JSON, nullable=True, comment="Job result data"),
        sa.Column("error", sa.Text, nullable=True, comment="Terminal error message"),
        sa.Column(
            "last_error",
            sa.Text,
            nullable=True,
            comment="Error of the most recent failed attempt",
        ),
        # Worker coordination fields
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID that owns the job"
        ),
        sa.Column(
            "locked_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="When job was claimed",
        ),
        sa.Column(
            "heartbeat_at",
            sa.TIMESTAMP(timezone=True),
            nullable=True,
            comment="Last worker heartbeat",
        ),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("priority BETWEEN 1 AND 10", name="jobs_priority_check"),
        sa.CheckConstraint("progress BETWEEN 0 AND 100", name="jobs_progress_check"),
        sa.CheckConstraint("attempts <= max_attempts", name="jobs_attempts_check"),
    )

    # Claim order: due queued jobs by priority, then age
    op.create_index("ix_jobs_claim_order", "jobs", ["status", "priority", "run_at"])
    # Cleanup of old terminal jobs
    op.create_index("ix_jobs_completed_at", "jobs", ["completed_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_jobs_completed_at", table_name="jobs")
    op.drop_index("ix_jobs_claim_order", table_name="jobs")
    op.drop_table("jobs")
