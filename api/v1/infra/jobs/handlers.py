"""
Job processors registered with the queue.

Each processor declares a pydantic payload model; payloads are validated
when a job is submitted and again when it runs.
"""

import asyncio
import csv
import io
import json
import logging
import time
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Generic, Literal, TypeVar

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from api.v1.core.exceptions import ValidationError, public_error_message
from api.v1.core.registries import ProgressCallback
from api.v1.infra.jobs.collaborators import AnalysisClient, ExportDataSource
from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.models import utcnow

if TYPE_CHECKING:
    from api.v1.infra.jobs.queue import JobQueue

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class BaseJobProcessor(Generic[PayloadT]):
    """Base class binding a job type to its payload model."""

    job_type: str = ""
    payload_model: type[PayloadT]

    def validate_payload(self, payload: dict[str, Any]) -> PayloadT:
        try:
            return self.payload_model.model_validate(payload)
        except PydanticValidationError as e:
            errors = [
                {"loc": list(error.get("loc", [])), "msg": error.get("msg", "")}
                for error in e.errors()
            ]
            raise ValidationError(
                f"Invalid payload for job type '{self.job_type}'",
                {"job_type": self.job_type, "errors": errors},
            ) from None

    def parse_payload(self, job: Job) -> PayloadT:
        return self.validate_payload(job.payload)

    async def process(self, job: Job, report_progress: ProgressCallback) -> Any:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release collaborators that hold open connections."""
        for collaborator in self._collaborators():
            close = getattr(collaborator, "aclose", None)
            if close is not None:
                await close()

    def _collaborators(self) -> list[Any]:
        return []


# Batch analysis


class RepositoryRef(BaseModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    url: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class BatchAnalysisPayload(BaseModel):
    repositories: list[RepositoryRef] = Field(default_factory=list)
    user_id: str | None = None
    notification_email: str | None = None


class BatchAnalysisProcessor(BaseJobProcessor[BatchAnalysisPayload]):
    """
    Analyzes many repositories in one job.

    Payload expected:
    {
        "repositories": [{"owner": "octocat", "repo": "hello-world"}],
        "user_id": "user-1",  # optional
    }

    A failing repository is recorded and the batch continues.
    """

    job_type = "batch-analysis"
    payload_model = BatchAnalysisPayload

    def __init__(self, client: AnalysisClient, item_delay_ms: int = 1000):
        self.client = client
        self.item_delay_ms = item_delay_ms

    def _collaborators(self) -> list[Any]:
        return [self.client]

    async def process(
        self, job: Job, report_progress: ProgressCallback
    ) -> dict[str, Any]:
        payload = self.parse_payload(job)
        total = len(payload.repositories)

        logger.info("Starting batch analysis", extra={"total_repositories": total})

        results: list[dict[str, Any]] = []
        successful = 0
        failed = 0

        for index, ref in enumerate(payload.repositories):
            try:
                analysis = await self.client.analyze(ref.owner, ref.repo)
            except Exception as e:
                failed += 1
                results.append(
                    {
                        "repository": ref.full_name,
                        "status": "failed",
                        "error": public_error_message(e),
                    }
                )
                logger.warning(
                    "Repository analysis failed",
                    extra={"repository": ref.full_name, "error": str(e)},
                )
            else:
                successful += 1
                results.append(
                    {"repository": ref.full_name, "status": "success", "analysis": analysis}
                )

            # ceil((index + 1) / total * 100) without float rounding
            await report_progress(((index + 1) * 100 + total - 1) // total)

            if self.item_delay_ms and index < total - 1:
                await asyncio.sleep(self.item_delay_ms / 1000)

        logger.info(
            "Batch analysis completed",
            extra={"successful": successful, "failed": failed},
        )

        return {
            "total_repositories": total,
            "successful_analyses": successful,
            "failed_analyses": failed,
            "results": results,
            "completed_at": utcnow().isoformat(),
        }


# Export


class ExportFilters(BaseModel):
    start_date: str | None = None
    end_date: str | None = None
    min_score: float | None = None
    max_score: float | None = None
    language: str | None = None


class ExportPayload(BaseModel):
    format: Literal["csv", "json"]
    export_type: Literal["analyses", "repositories", "saved"]
    user_id: str | None = None
    filters: ExportFilters = Field(default_factory=ExportFilters)
    notification_email: str | None = None

    @model_validator(mode="after")
    def _saved_export_needs_user(self) -> "ExportPayload":
        if self.export_type == "saved" and not self.user_id:
            raise ValueError("user_id is required for saved repository exports")
        return self


def _csv_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return "; ".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value)
    return value


def rows_to_csv(rows: list[dict[str, Any]]) -> str:
    """Header from the union of row keys, in first-seen order."""
    if not rows:
        return ""

    headers: list[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_csv_value(row.get(h)) for h in headers])
    return buffer.getvalue().rstrip("\n")


def rows_to_json(rows: list[dict[str, Any]]) -> str:
    return json.dumps(
        {
            "exported_at": utcnow().isoformat(),
            "record_count": len(rows),
            "data": rows,
        },
        indent=2,
        default=str,
    )


class ExportProcessor(BaseJobProcessor[ExportPayload]):
    """
    Builds a CSV or JSON export from rows supplied by a data source.

    Payload expected:
    {
        "format": "csv" | "json",
        "export_type": "analyses" | "repositories" | "saved",
        "user_id": "user-1",  # required for "saved"
        "filters": {"language": "Python"}  # optional
    }
    """

    job_type = "export"
    payload_model = ExportPayload

    def __init__(self, source: ExportDataSource):
        self.source = source

    def _collaborators(self) -> list[Any]:
        return [self.source]

    async def process(
        self, job: Job, report_progress: ProgressCallback
    ) -> dict[str, Any]:
        payload = self.parse_payload(job)
        logger.info(
            "Starting export",
            extra={"format": payload.format, "export_type": payload.export_type},
        )
        await report_progress(10)

        rows = await self.source.fetch_rows(
            payload.export_type,
            payload.user_id,
            payload.filters.model_dump(exclude_none=True),
        )
        await report_progress(50)

        if payload.format == "csv":
            data = rows_to_csv(rows)
        else:
            data = rows_to_json(rows)
        file_name = f"{payload.export_type}_export_{int(time.time() * 1000)}.{payload.format}"
        await report_progress(90)

        logger.info(
            "Export completed",
            extra={"record_count": len(rows), "format": payload.format},
        )

        return {
            "format": payload.format,
            "record_count": len(rows),
            "data": data,
            "file_name": file_name,
            "completed_at": utcnow().isoformat(),
        }


# Maintenance


class MaintenancePayload(BaseModel):
    tasks: list[Literal["cleanup_jobs", "trim_metrics"]] = Field(
        default_factory=lambda: ["cleanup_jobs", "trim_metrics"]
    )
    older_than_ms: int | None = Field(default=None, ge=0)
    dry_run: bool = False


class MaintenanceCleanupProcessor(BaseJobProcessor[MaintenancePayload]):
    """
    Purges old terminal jobs and trims metrics samples on demand.

    Payload expected:
    {
        "tasks": ["cleanup_jobs", "trim_metrics"],  # optional, defaults to all
        "older_than_ms": 86400000,  # optional
        "dry_run": false  # optional
    }
    """

    job_type = "maintenance-cleanup"
    payload_model = MaintenancePayload

    def __init__(self, queue: "JobQueue", default_older_than_ms: int):
        self.queue = queue
        self.default_older_than_ms = default_older_than_ms

    async def process(
        self, job: Job, report_progress: ProgressCallback
    ) -> dict[str, Any]:
        payload = self.parse_payload(job)
        older_than_ms = (
            payload.older_than_ms
            if payload.older_than_ms is not None
            else self.default_older_than_ms
        )
        results: dict[str, Any] = {}

        logger.info(
            "Starting maintenance tasks",
            extra={"tasks": payload.tasks, "dry_run": payload.dry_run},
        )

        if "cleanup_jobs" in payload.tasks:
            if payload.dry_run:
                results["cleanup_jobs"] = {
                    "status": "dry_run",
                    "older_than_ms": older_than_ms,
                }
            else:
                deleted = await self.queue.cleanup(older_than_ms)
                results["cleanup_jobs"] = {"status": "completed", "deleted_count": deleted}
        await report_progress(50)

        if "trim_metrics" in payload.tasks:
            if payload.dry_run:
                results["trim_metrics"] = {"status": "dry_run"}
            else:
                removed = self.queue.metrics.clear_old_timings()
                results["trim_metrics"] = {"status": "completed", "removed_samples": removed}

        logger.info("Maintenance tasks completed", extra={"results": results})

        return {
            "status": "completed",
            "tasks_processed": payload.tasks,
            "dry_run": payload.dry_run,
            "results": results,
        }
