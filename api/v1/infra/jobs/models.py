"""
Durable queue store models for background jobs.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, Index, Integer, SmallInteger, Text
from sqlalchemy.orm import Mapped, mapped_column

from api.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class JobRecord(Base):
    """
    Persisted job row.

    The row is the single source of truth for job existence and state:
    - claiming is a compare-and-set on ``status`` (see JobStore.claim)
    - ``locked_by`` names the only worker allowed to write outcomes
    - ``run_at`` carries both the submission delay and retry backoff
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Processor-specific parameters",
    )
    requested_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Submitting user"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.QUEUED.value,
        comment="Job status: queued|processing|completed|failed|cancelled",
    )
    priority: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=5,
        comment="Priority 1-10, lower is higher priority",
    )
    run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Earliest time the job may be claimed",
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Number of claims made"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Claims allowed in total"
    )
    timeout_ms: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Per-attempt processing timeout"
    )

    # Results and progress
    progress: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Progress 0-100"
    )
    result: Mapped[Any | None] = mapped_column(
        JSON, nullable=True, comment="Job result data"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Terminal error message"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Error of the most recent failed attempt"
    )

    # Worker coordination
    locked_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker ID that owns the job"
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="When job was claimed"
    )
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Last worker heartbeat"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed', 'cancelled')",
            name="jobs_status_check",
        ),
        CheckConstraint("priority BETWEEN 1 AND 10", name="jobs_priority_check"),
        CheckConstraint("progress BETWEEN 0 AND 100", name="jobs_progress_check"),
        CheckConstraint("attempts <= max_attempts", name="jobs_attempts_check"),
        Index("ix_jobs_claim_order", "status", "priority", "run_at"),
        Index("ix_jobs_completed_at", "completed_at"),
    )

