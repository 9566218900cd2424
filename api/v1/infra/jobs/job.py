"""
In-memory job entity and its lifecycle state machine.

    queued -> processing -> completed | failed | cancelled
    failed -> queued            (retry granted, attempts < max_attempts)
    queued | processing -> cancelled  (caller initiated)

The durable store holds the authoritative copy; a Job is the projection a
worker mutates while it owns the job and what callers receive from
``JobQueue.get_job``.
"""

import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from api.v1.core.exceptions import InvalidStateError, ValidationError
from api.v1.infra.jobs.models import (
    TERMINAL_STATUSES,
    JobRecord,
    JobStatus,
    ensure_utc,
    utcnow,
)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_PRIORITY = 5

_id_lock = threading.Lock()
_last_id_ns = 0


def generate_job_id() -> str:
    """Unique id whose lexical order follows creation order within a process."""
    global _last_id_ns
    with _id_lock:
        now_ns = max(time.time_ns(), _last_id_ns + 1)
        _last_id_ns = now_ns
    return f"job_{now_ns:016x}_{secrets.token_hex(4)}"


@dataclass
class JobOptions:
    """Submission options for a job."""

    priority: int = DEFAULT_PRIORITY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay_ms: int = 0
    timeout_ms: int | None = None

    def validate(self) -> None:
        if not 1 <= self.priority <= 10:
            raise ValidationError(
                "priority must be between 1 and 10", {"priority": self.priority}
            )
        if self.max_attempts < 1:
            raise ValidationError(
                "max_attempts must be at least 1", {"max_attempts": self.max_attempts}
            )
        if self.delay_ms < 0:
            raise ValidationError(
                "delay_ms must not be negative", {"delay_ms": self.delay_ms}
            )
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValidationError(
                "timeout_ms must be positive", {"timeout_ms": self.timeout_ms}
            )


@dataclass
class Job:
    """A unit of asynchronous work with a tracked lifecycle."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_job_id)
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result: Any = None
    error: str | None = None
    last_error: str | None = None
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    priority: int = DEFAULT_PRIORITY
    delay_ms: int = 0
    timeout_ms: int | None = None
    requested_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def create(
        cls,
        job_type: str,
        payload: dict[str, Any] | None = None,
        options: JobOptions | None = None,
        requested_by: str | None = None,
    ) -> "Job":
        options = options or JobOptions()
        options.validate()
        return cls(
            type=job_type,
            payload=payload or {},
            max_attempts=options.max_attempts,
            priority=options.priority,
            delay_ms=options.delay_ms,
            timeout_ms=options.timeout_ms,
            requested_by=requested_by,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _require(self, *allowed: JobStatus, action: str) -> None:
        if self.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action} job {self.id} in state: {self.status.value}",
                {"job_id": self.id, "status": self.status.value},
            )

    def mark_processing(self) -> None:
        """Claim transition; only the worker that won the claim calls this."""
        self._require(JobStatus.QUEUED, action="start")
        if self.attempts >= self.max_attempts:
            raise InvalidStateError(
                f"Job {self.id} has no attempts left",
                {"attempts": self.attempts, "max_attempts": self.max_attempts},
            )
        self.status = JobStatus.PROCESSING
        self.attempts += 1
        self.progress = 0
        if self.started_at is None:
            self.started_at = utcnow()

    def update_progress(self, progress: int) -> bool:
        """
        Record progress for the running attempt.

        Returns True when the stored value changed. A value lower than the
        current progress is accepted but ignored.
        """
        if isinstance(progress, bool) or not isinstance(progress, int):
            raise ValidationError(
                "Progress must be an integer between 0 and 100",
                {"progress": repr(progress)},
            )
        if progress < 0 or progress > 100:
            raise ValidationError(
                "Progress must be between 0 and 100", {"progress": progress}
            )
        self._require(JobStatus.PROCESSING, action="update progress of")
        if progress <= self.progress:
            return False
        self.progress = progress
        return True

    def mark_complete(self, result: Any) -> None:
        self._require(JobStatus.PROCESSING, action="complete")
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.result = result
        self.error = None
        self.completed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self._require(JobStatus.PROCESSING, action="fail")
        if not error:
            raise ValidationError("A failed job requires an error message")
        self.status = JobStatus.FAILED
        self.error = error
        self.last_error = error
        self.result = None
        self.completed_at = utcnow()

    def reject(self, error: str) -> None:
        """Fail a queued job that can never run here; no attempt is consumed."""
        self._require(JobStatus.QUEUED, action="reject")
        self.status = JobStatus.FAILED
        self.error = error
        self.last_error = error
        self.completed_at = utcnow()

    def mark_cancelled(self) -> None:
        self._require(JobStatus.QUEUED, JobStatus.PROCESSING, action="cancel")
        self.status = JobStatus.CANCELLED
        self.completed_at = utcnow()

    def can_retry(self) -> bool:
        return self.status == JobStatus.FAILED and self.attempts < self.max_attempts

    def requeue(self) -> None:
        """Grant a retry: failed -> queued. ``last_error`` is kept."""
        if not self.can_retry():
            raise InvalidStateError(
                f"Job {self.id} cannot be retried",
                {"attempts": self.attempts, "max_attempts": self.max_attempts},
            )
        self.status = JobStatus.QUEUED
        self.error = None
        self.progress = 0
        self.completed_at = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "status": self.status.value,
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "last_error": self.last_error,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "priority": self.priority,
            "timeout_ms": self.timeout_ms,
            "requested_by": self.requested_by,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_record(cls, record: JobRecord) -> "Job":
        """Rebuild the projection from the store, reconciling terminal fields."""
        status = JobStatus(record.status)
        return cls(
            id=record.id,
            type=record.type,
            payload=record.payload or {},
            status=status,
            progress=100 if status == JobStatus.COMPLETED else record.progress,
            result=record.result if status == JobStatus.COMPLETED else None,
            error=record.error if status == JobStatus.FAILED else None,
            last_error=record.last_error,
            attempts=min(record.attempts, record.max_attempts),
            max_attempts=record.max_attempts,
            priority=record.priority,
            timeout_ms=record.timeout_ms,
            requested_by=record.requested_by,
            created_at=ensure_utc(record.created_at),
            started_at=ensure_utc(record.started_at),
            completed_at=ensure_utc(record.completed_at),
        )
