"""
Job API Pydantic schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from api.config.settings import Settings
from api.v1.infra.jobs.job import Job, JobOptions


class JobOptionsIn(BaseModel):
    """Submission options accepted by the API; omitted fields use the queue defaults."""

    priority: int | None = Field(
        default=None, ge=1, le=10, description="Priority (1=highest, 10=lowest)"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, le=100, description="Attempts before giving up"
    )
    delay_ms: int = Field(default=0, ge=0, description="Delay before first eligibility")
    timeout_ms: int | None = Field(
        default=None, gt=0, description="Per-attempt processing timeout"
    )

    def to_options(self, settings: Settings) -> JobOptions:
        return JobOptions(
            priority=(
                self.priority if self.priority is not None else settings.job_default_priority
            ),
            max_attempts=(
                self.max_attempts
                if self.max_attempts is not None
                else settings.job_max_attempts
            ),
            delay_ms=self.delay_ms,
            timeout_ms=self.timeout_ms,
        )


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API."""

    type: str = Field(..., min_length=1, description="Job type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job payload")
    options: JobOptionsIn | None = Field(default=None, description="Job options")


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    payload: dict[str, Any]
    status: str
    progress: int
    result: Any | None = None
    error: str | None = None
    last_error: str | None = None
    attempts: int
    max_attempts: int
    priority: int
    timeout_ms: int | None = None
    requested_by: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobResponse":
        return cls.model_validate(job.to_dict())


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int
    stats: "JobStatsResponse"


class JobStatsResponse(BaseModel):
    """Point-in-time queue depth by state."""

    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int


class JobTypeMetrics(BaseModel):
    job_type: str
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    success_rate: float
    average_processing_time_ms: float
    last_updated: datetime


class JobMetricsResponse(BaseModel):
    """Metrics of the process serving the request."""

    worker_id: str
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    overall_success_rate: float
    average_processing_time_ms: float
    job_type_breakdown: dict[str, JobTypeMetrics]
    processing_time_percentiles: dict[str, float] = Field(default_factory=dict)


class JobCleanupResponse(BaseModel):
    deleted_count: int
    older_than_ms: int


JobListResponse.model_rebuild()
