"""
Per-process job metrics.

Aggregates are kept per job type and never expire; individual timing
samples are bounded by a retention window and a maximum count. Every
attempt is observed, so counts describe attempts rather than jobs.
"""

import math
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from api.config.logging import get_logger
from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.models import JobStatus, utcnow

logger = get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class JobMetricsData:
    """Aggregate counters for one job type."""

    job_type: str
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    average_processing_time_ms: float = 0.0
    timed_jobs: int = 0
    last_updated: datetime = field(default_factory=utcnow)

    @property
    def success_rate(self) -> float:
        if self.total_jobs == 0:
            return 0.0
        return self.completed_jobs / self.total_jobs

    def observe(self, status: JobStatus, processing_time_ms: float | None) -> None:
        self.total_jobs += 1
        if status == JobStatus.COMPLETED:
            self.completed_jobs += 1
        else:
            self.failed_jobs += 1

        if processing_time_ms is not None:
            self.timed_jobs += 1
            self.average_processing_time_ms += (
                processing_time_ms - self.average_processing_time_ms
            ) / self.timed_jobs

        self.last_updated = utcnow()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["success_rate"] = self.success_rate
        return data


@dataclass
class JobTimingSample:
    """Timing of one job attempt, kept for recent-history queries."""

    job_id: str
    job_type: str
    status: JobStatus
    attempts: int
    start_time: datetime | None = None
    end_time: datetime | None = None
    processing_time_ms: float | None = None
    error: str | None = None


class JobMetrics:
    """Collects and analyzes job processing metrics."""

    def __init__(self, retention_ms: int = DAY_MS, max_samples: int = 10_000):
        self.retention_ms = retention_ms
        self.max_samples = max_samples
        self._metrics: dict[str, JobMetricsData] = {}
        self._timings: OrderedDict[str, JobTimingSample] = OrderedDict()

    def record_job_start(self, job: Job) -> None:
        sample = JobTimingSample(
            job_id=job.id,
            job_type=job.type,
            status=job.status,
            attempts=job.attempts,
            start_time=utcnow(),
        )
        # Re-insert so a retried job moves to the most recent position
        self._timings.pop(job.id, None)
        self._timings[job.id] = sample
        while len(self._timings) > self.max_samples:
            self._timings.popitem(last=False)

        logger.debug(
            "Job started", job_id=job.id, job_type=job.type, attempt=job.attempts
        )

    def record_job_complete(self, job: Job) -> None:
        duration = self._finish(job, JobStatus.COMPLETED)
        logger.debug(
            "Job completed", job_id=job.id, job_type=job.type, processing_time_ms=duration
        )

    def record_job_failed(self, job: Job, error: BaseException | str) -> None:
        duration = self._finish(job, JobStatus.FAILED, str(error))
        logger.debug(
            "Job failed",
            job_id=job.id,
            job_type=job.type,
            processing_time_ms=duration,
            error=str(error),
        )

    def _finish(
        self, job: Job, status: JobStatus, error: str | None = None
    ) -> float | None:
        duration: float | None = None
        sample = self._timings.get(job.id)
        if sample is not None:
            sample.end_time = utcnow()
            sample.status = status
            sample.error = error
            if sample.start_time is not None:
                duration = (sample.end_time - sample.start_time).total_seconds() * 1000
                sample.processing_time_ms = duration

        record = self._metrics.get(job.type)
        if record is None:
            record = JobMetricsData(job_type=job.type)
            self._metrics[job.type] = record
        record.observe(status, duration)
        return duration

    def get_metrics_for_job_type(self, job_type: str) -> JobMetricsData | None:
        return self._metrics.get(job_type)

    def get_all_metrics(self) -> list[JobMetricsData]:
        return list(self._metrics.values())

    def get_metrics_summary(self) -> dict[str, Any]:
        all_metrics = self.get_all_metrics()

        total_jobs = sum(m.total_jobs for m in all_metrics)
        completed_jobs = sum(m.completed_jobs for m in all_metrics)
        failed_jobs = sum(m.failed_jobs for m in all_metrics)
        timed_jobs = sum(m.timed_jobs for m in all_metrics)
        total_time = sum(m.average_processing_time_ms * m.timed_jobs for m in all_metrics)

        return {
            "total_jobs": total_jobs,
            "completed_jobs": completed_jobs,
            "failed_jobs": failed_jobs,
            "overall_success_rate": completed_jobs / total_jobs if total_jobs else 0.0,
            "average_processing_time_ms": total_time / timed_jobs if timed_jobs else 0.0,
            "job_type_breakdown": {m.job_type: m.to_dict() for m in all_metrics},
        }

    def get_job_timing(self, job_id: str) -> JobTimingSample | None:
        return self._timings.get(job_id)

    def get_recent_job_timings(self, limit: int = 100) -> list[JobTimingSample]:
        """Most recently started samples first."""
        return list(reversed(self._timings.values()))[:limit]

    def get_processing_time_percentiles(
        self,
        job_type: str | None = None,
        percentiles: tuple[int, ...] = (50, 90, 99),
    ) -> dict[str, float]:
        """Nearest-rank percentiles over the retained samples."""
        durations = sorted(
            s.processing_time_ms
            for s in self._timings.values()
            if s.processing_time_ms is not None
            and (job_type is None or s.job_type == job_type)
        )
        if not durations:
            return {}

        result = {}
        for p in percentiles:
            rank = max(1, math.ceil(p / 100 * len(durations)))
            result[f"p{p}"] = durations[rank - 1]
        return result

    def clear_old_timings(self, older_than_ms: int | None = None) -> int:
        """Drop samples that started before the retention window."""
        window = self.retention_ms if older_than_ms is None else older_than_ms
        cutoff = utcnow() - timedelta(milliseconds=window)

        stale = [
            job_id
            for job_id, sample in self._timings.items()
            if sample.start_time is None or sample.start_time < cutoff
        ]
        for job_id in stale:
            del self._timings[job_id]

        if stale:
            logger.info("Cleared old job timings", removed=len(stale), older_than_ms=window)
        return len(stale)

    def reset(self) -> None:
        self._metrics.clear()
        self._timings.clear()
        logger.info("All job metrics reset")
