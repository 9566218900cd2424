"""
Durable queue store backed by the ``jobs`` table.

Every state-changing write is a conditional UPDATE whose WHERE clause
restates the expected current state; ``rowcount`` tells the caller whether
it won. Claims therefore behave the same on PostgreSQL and SQLite without
row locks, and a worker that lost ownership (cancel, stuck-job recovery)
can never overwrite the row.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update

from api.infra.database import Database
from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.models import (
    TERMINAL_STATUSES,
    JobRecord,
    JobStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

_NO_SYNC = {"synchronize_session": False}


class JobStore:
    """Conditional reads and writes of persisted jobs."""

    def __init__(self, database: Database):
        self.database = database

    async def _execute_update(self, statement) -> int:
        async with self.database.SessionLocal() as session:
            result = await session.execute(
                statement.execution_options(**_NO_SYNC)
            )
            await session.commit()
            return result.rowcount

    async def add(self, job: Job) -> None:
        """Persist a new queued job; ``run_at`` carries the submission delay."""
        now = utcnow()
        record = JobRecord(
            id=job.id,
            type=job.type,
            payload=job.payload,
            requested_by=job.requested_by,
            status=job.status.value,
            priority=job.priority,
            run_at=job.created_at + timedelta(milliseconds=job.delay_ms),
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            timeout_ms=job.timeout_ms,
            progress=job.progress,
            created_at=job.created_at,
            updated_at=now,
        )
        async with self.database.SessionLocal() as session:
            session.add(record)
            await session.commit()

    async def get(self, job_id: str) -> Job | None:
        async with self.database.SessionLocal() as session:
            record = await session.get(JobRecord, job_id)
            return Job.from_record(record) if record is not None else None

    async def next_eligible(
        self, limit: int = 1, now: datetime | None = None
    ) -> list[Job]:
        """Queued jobs that are due, in claim order (priority, run_at, id)."""
        now = now or utcnow()
        async with self.database.SessionLocal() as session:
            result = await session.execute(
                select(JobRecord)
                .where(
                    and_(
                        JobRecord.status == JobStatus.QUEUED.value,
                        JobRecord.run_at <= now,
                    )
                )
                .order_by(JobRecord.priority, JobRecord.run_at, JobRecord.id)
                .limit(limit)
            )
            return [Job.from_record(record) for record in result.scalars().all()]

    async def claim(self, job: Job, worker_id: str) -> bool:
        """
        Atomically move a queued job to processing for ``worker_id``.

        The guard on ``attempts`` ties the claim to the projection the caller
        read, so two workers racing for the same row cannot both succeed.
        """
        now = utcnow()
        claimed = await self._execute_update(
            update(JobRecord)
            .where(
                and_(
                    JobRecord.id == job.id,
                    JobRecord.status == JobStatus.QUEUED.value,
                    JobRecord.attempts == job.attempts,
                    JobRecord.attempts < JobRecord.max_attempts,
                )
            )
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=JobRecord.attempts + 1,
                progress=0,
                started_at=func.coalesce(JobRecord.started_at, now),
                locked_by=worker_id,
                locked_at=now,
                heartbeat_at=now,
                updated_at=now,
            )
        )
        return claimed == 1

    async def update_progress(self, job_id: str, worker_id: str, progress: int) -> bool:
        """Persist progress for an owned job; lower values never overwrite."""
        now = utcnow()
        updated = await self._execute_update(
            update(JobRecord)
            .where(
                and_(
                    JobRecord.id == job_id,
                    JobRecord.locked_by == worker_id,
                    JobRecord.status == JobStatus.PROCESSING.value,
                    JobRecord.progress < progress,
                )
            )
            .values(progress=progress, heartbeat_at=now, updated_at=now)
        )
        return updated == 1

    def _owned_by(self, job_id: str, worker_id: str):
        return and_(
            JobRecord.id == job_id,
            JobRecord.locked_by == worker_id,
            JobRecord.status == JobStatus.PROCESSING.value,
        )

    async def save_outcome(self, job: Job, worker_id: str) -> bool:
        """Write a terminal outcome; fails if ``worker_id`` no longer owns the job."""
        updated = await self._execute_update(
            update(JobRecord)
            .where(self._owned_by(job.id, worker_id))
            .values(
                status=job.status.value,
                progress=job.progress,
                result=job.result,
                error=job.error,
                last_error=job.last_error,
                completed_at=job.completed_at,
                locked_by=None,
                locked_at=None,
                heartbeat_at=None,
                updated_at=utcnow(),
            )
        )
        return updated == 1

    async def requeue(self, job: Job, worker_id: str, run_at: datetime) -> bool:
        """Hand an owned job back to the queue for a later attempt."""
        updated = await self._execute_update(
            update(JobRecord)
            .where(self._owned_by(job.id, worker_id))
            .values(
                status=JobStatus.QUEUED.value,
                run_at=run_at,
                progress=0,
                result=None,
                error=None,
                last_error=job.last_error,
                completed_at=None,
                locked_by=None,
                locked_at=None,
                heartbeat_at=None,
                updated_at=utcnow(),
            )
        )
        return updated == 1

    async def reject(self, job: Job) -> bool:
        """Fail a queued job that no processor can run; attempts are untouched."""
        updated = await self._execute_update(
            update(JobRecord)
            .where(
                and_(
                    JobRecord.id == job.id,
                    JobRecord.status == JobStatus.QUEUED.value,
                )
            )
            .values(
                status=JobStatus.FAILED.value,
                error=job.error,
                last_error=job.last_error,
                completed_at=job.completed_at,
                updated_at=utcnow(),
            )
        )
        return updated == 1

    async def cancel(self, job_id: str, expected_status: JobStatus) -> bool:
        """Cancel a job still in ``expected_status``; releases any worker lock."""
        now = utcnow()
        updated = await self._execute_update(
            update(JobRecord)
            .where(
                and_(
                    JobRecord.id == job_id,
                    JobRecord.status == expected_status.value,
                )
            )
            .values(
                status=JobStatus.CANCELLED.value,
                result=None,
                error=None,
                completed_at=now,
                locked_by=None,
                locked_at=None,
                heartbeat_at=None,
                updated_at=now,
            )
        )
        return updated == 1

    async def counts(self, now: datetime | None = None) -> dict[str, int]:
        """Job counts by status, with queued jobs split into due and delayed."""
        now = now or utcnow()
        async with self.database.SessionLocal() as session:
            by_status = await session.execute(
                select(JobRecord.status, func.count()).group_by(JobRecord.status)
            )
            counts = {status.value: 0 for status in JobStatus}
            for status, count in by_status.all():
                counts[status] = count

            delayed = await session.execute(
                select(func.count()).where(
                    and_(
                        JobRecord.status == JobStatus.QUEUED.value,
                        JobRecord.run_at > now,
                    )
                )
            )
            counts["delayed"] = delayed.scalar_one()
        return counts

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """Newest jobs first, with the total matching the filters."""
        conditions: list[Any] = []
        if status is not None:
            conditions.append(JobRecord.status == status.value)
        if job_type is not None:
            conditions.append(JobRecord.type == job_type)

        async with self.database.SessionLocal() as session:
            total = await session.execute(
                select(func.count()).select_from(JobRecord).where(*conditions)
            )
            result = await session.execute(
                select(JobRecord)
                .where(*conditions)
                .order_by(JobRecord.created_at.desc(), JobRecord.id.desc())
                .limit(limit)
                .offset(offset)
            )
            jobs = [Job.from_record(record) for record in result.scalars().all()]
            return jobs, total.scalar_one()

    async def cleanup(self, older_than_ms: int) -> int:
        """Delete terminal jobs that finished before the cutoff."""
        cutoff = utcnow() - timedelta(milliseconds=older_than_ms)
        async with self.database.SessionLocal() as session:
            result = await session.execute(
                delete(JobRecord)
                .where(
                    and_(
                        JobRecord.status.in_([s.value for s in TERMINAL_STATUSES]),
                        JobRecord.completed_at < cutoff,
                    )
                )
                .execution_options(**_NO_SYNC)
            )
            await session.commit()
            deleted = result.rowcount

        if deleted:
            logger.info(
                "Cleaned up old jobs",
                extra={"deleted_count": deleted, "older_than_ms": older_than_ms},
            )
        return deleted

    async def heartbeat(self, worker_id: str, job_ids: list[str]) -> int:
        if not job_ids:
            return 0
        return await self._execute_update(
            update(JobRecord)
            .where(
                and_(
                    JobRecord.id.in_(job_ids),
                    JobRecord.locked_by == worker_id,
                    JobRecord.status == JobStatus.PROCESSING.value,
                )
            )
            .values(heartbeat_at=utcnow())
        )

    async def recover_stuck(self, timeout_s: int) -> tuple[int, list[Job]]:
        """
        Release processing jobs whose worker stopped heartbeating.

        Jobs with attempts left go back to the queue; the rest fail with a
        timeout error so they never stay in processing forever. Returns the
        number requeued and the jobs failed here, so the caller can run the
        terminal failure side effects for them.
        """
        now = utcnow()
        cutoff = now - timedelta(seconds=timeout_s)
        message = f"Worker heartbeat lost for more than {timeout_s}s"
        stale = and_(
            JobRecord.status == JobStatus.PROCESSING.value,
            or_(
                JobRecord.heartbeat_at < cutoff,
                and_(JobRecord.heartbeat_at.is_(None), JobRecord.locked_at < cutoff),
            ),
        )
        released = {
            "locked_by": None,
            "locked_at": None,
            "heartbeat_at": None,
            "last_error": message,
            "updated_at": now,
        }

        requeued = await self._execute_update(
            update(JobRecord)
            .where(and_(stale, JobRecord.attempts < JobRecord.max_attempts))
            .values(status=JobStatus.QUEUED.value, run_at=now, progress=0, **released)
        )
        exhausted = and_(stale, JobRecord.attempts >= JobRecord.max_attempts)
        async with self.database.SessionLocal() as session:
            result = await session.execute(select(JobRecord.id).where(exhausted))
            exhausted_ids = list(result.scalars().all())

        failed = 0
        if exhausted_ids:
            failed = await self._execute_update(
                update(JobRecord)
                .where(and_(exhausted, JobRecord.id.in_(exhausted_ids)))
                .values(
                    status=JobStatus.FAILED.value,
                    error=message,
                    result=None,
                    completed_at=now,
                    **released,
                )
            )

        failed_jobs: list[Job] = []
        if failed:
            async with self.database.SessionLocal() as session:
                result = await session.execute(
                    select(JobRecord).where(
                        and_(
                            JobRecord.id.in_(exhausted_ids),
                            JobRecord.status == JobStatus.FAILED.value,
                            JobRecord.error == message,
                        )
                    )
                )
                failed_jobs = [Job.from_record(r) for r in result.scalars().all()]

        if requeued or failed:
            logger.warning(
                "Recovered stuck jobs",
                extra={
                    "requeued": requeued,
                    "failed": failed,
                    "timeout_seconds": timeout_s,
                },
            )
        return requeued, failed_jobs
