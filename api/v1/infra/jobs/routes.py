"""
Job management API endpoints.

Submission, status polling, cancellation and queue statistics.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status

from api.v1.core.exceptions import (
    NotFoundError,
    QueueUnavailableError,
    create_success_response,
)
from api.v1.core.security import AdminPrincipalDep, Principal, PrincipalDep
from api.v1.infra.jobs.metrics import DAY_MS
from api.v1.infra.jobs.models import JobStatus
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.jobs.schemas import (
    JobCleanupResponse,
    JobEnqueueRequest,
    JobListResponse,
    JobMetricsResponse,
    JobResponse,
    JobStatsResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_queue(request: Request) -> JobQueue:
    """Queue owned by the running application."""
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise QueueUnavailableError()
    return queue


JobQueueDep = Depends(get_job_queue)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    request: Request,
    principal: Principal = PrincipalDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Enqueue a new background job."""

    options = (
        job_request.options.to_options(queue.settings) if job_request.options else None
    )
    job = await queue.add_job(
        job_request.type,
        job_request.payload,
        options,
        requested_by=principal.user_id,
    )

    logger.info(
        "Job enqueued via API",
        extra={"job_id": job.id, "type": job.type, "user_id": principal.user_id},
    )

    return create_success_response(
        data=JobResponse.from_job(job).model_dump(mode="json"),
        message="Job queued",
        request_id=_request_id(request),
    )


@router.get("", response_model=dict)
async def list_jobs(
    request: Request,
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = PrincipalDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """List jobs, newest first, together with current queue statistics."""

    jobs, total = await queue.list_jobs(
        status=status, job_type=type, limit=limit, offset=offset
    )
    stats = await queue.get_stats()

    response_data = JobListResponse(
        jobs=[JobResponse.from_job(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
        stats=JobStatsResponse(**stats.to_dict()),
    )

    return create_success_response(
        data=response_data.model_dump(mode="json"), request_id=_request_id(request)
    )


@router.get("/stats", response_model=dict)
async def get_job_stats(
    request: Request,
    principal: Principal = PrincipalDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Get point-in-time queue statistics."""

    stats = await queue.get_stats()
    return create_success_response(
        data=JobStatsResponse(**stats.to_dict()).model_dump(),
        request_id=_request_id(request),
    )


@router.get("/metrics", response_model=dict)
async def get_job_metrics(
    request: Request,
    type: str | None = Query(default=None, description="Percentiles for one job type"),
    principal: Principal = PrincipalDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Get processing metrics recorded by this process."""

    summary = queue.metrics.get_metrics_summary()
    response_data = JobMetricsResponse(
        worker_id=queue.worker_id,
        processing_time_percentiles=queue.metrics.get_processing_time_percentiles(type),
        **summary,
    )

    return create_success_response(
        data=response_data.model_dump(mode="json"), request_id=_request_id(request)
    )


@router.post("/cleanup", response_model=dict)
async def cleanup_jobs(
    request: Request,
    older_than_ms: int = Query(default=DAY_MS, ge=0, description="Minimum age of purged jobs"),
    principal: Principal = AdminPrincipalDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Purge terminal jobs older than the given age."""

    deleted = await queue.cleanup(older_than_ms)

    logger.info(
        "Job cleanup via API",
        extra={"deleted_count": deleted, "user_id": principal.user_id},
    )

    return create_success_response(
        data=JobCleanupResponse(
            deleted_count=deleted, older_than_ms=older_than_ms
        ).model_dump(),
        request_id=_request_id(request),
    )


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: str,
    request: Request,
    principal: Principal = PrincipalDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await queue.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})

    return create_success_response(
        data=JobResponse.from_job(job).model_dump(mode="json"),
        request_id=_request_id(request),
    )


@router.delete("/{job_id}", response_model=dict)
async def cancel_job(
    job_id: str,
    request: Request,
    principal: Principal = PrincipalDep,
    queue: JobQueue = JobQueueDep,
) -> dict[str, Any]:
    """Cancel a queued or processing job."""

    job = await queue.cancel_job(job_id)

    logger.info(
        "Job cancelled via API",
        extra={"job_id": job_id, "user_id": principal.user_id},
    )

    return create_success_response(
        data=JobResponse.from_job(job).model_dump(mode="json"),
        message="Job cancelled",
        request_id=_request_id(request),
    )
