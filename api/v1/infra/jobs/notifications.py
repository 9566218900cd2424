"""
Job notifications.

The queue calls a NotificationSink after each completed, failed or
progress transition. The default sink logs every notification and, when a
webhook URL is configured, POSTs the same JSON document to it. Nothing a
sink does may change the job it reports on.
"""

from typing import Any, Protocol

import httpx

from api.config.logging import get_logger
from api.config.settings import Settings
from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.models import utcnow

logger = get_logger(__name__)


class NotificationSink(Protocol):
    """Side-effect-only receiver of job transitions."""

    async def notify_job_complete(self, job: Job, result: Any) -> None:
        ...

    async def notify_job_failed(self, job: Job, error: str) -> None:
        ...

    async def notify_job_progress(self, job: Job, progress: int) -> None:
        ...


def summarize_result(job_type: str, result: Any) -> str:
    """Human readable one-liner for a completed job."""
    data = result if isinstance(result, dict) else {}

    if job_type == "batch-analysis":
        return (
            f"Analyzed {data.get('total_repositories', 0)} repositories: "
            f"{data.get('successful_analyses', 0)} successful, "
            f"{data.get('failed_analyses', 0)} failed"
        )
    if job_type == "export":
        export_format = str(data.get("format", "unknown")).upper()
        return f"Exported {data.get('record_count', 0)} records in {export_format} format"
    return "Job completed successfully"


class NotificationService:
    """Logs notifications and optionally forwards them to a webhook."""

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout_s: float = 10.0,
        milestone_step: int = 25,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not 1 <= milestone_step <= 100:
            raise ValueError("milestone_step must be between 1 and 100")
        self.webhook_url = webhook_url
        self.timeout_s = timeout_s
        self.milestone_step = milestone_step
        self._client = http_client
        self._owns_client = http_client is None
        # job id -> (attempt, highest milestone notified in that attempt)
        self._milestones: dict[str, tuple[int, int]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationService":
        return cls(
            webhook_url=settings.notification_webhook_url,
            timeout_s=settings.notification_timeout_s,
            milestone_step=settings.progress_milestone_step,
        )

    async def notify_job_complete(self, job: Job, result: Any) -> None:
        self._milestones.pop(job.id, None)
        await self._emit(
            {
                "event": "job.completed",
                "job_id": job.id,
                "job_type": job.type,
                "status": "completed",
                "result": summarize_result(job.type, result),
            }
        )

    async def notify_job_failed(self, job: Job, error: str) -> None:
        self._milestones.pop(job.id, None)
        await self._emit(
            {
                "event": "job.failed",
                "job_id": job.id,
                "job_type": job.type,
                "status": "failed",
                "error": str(error),
            }
        )

    async def notify_job_progress(self, job: Job, progress: int) -> None:
        """Only emits when progress crosses a new milestone for this attempt."""
        milestone = (progress // self.milestone_step) * self.milestone_step
        if milestone <= 0:
            return

        attempt, last = self._milestones.get(job.id, (job.attempts, 0))
        if attempt != job.attempts:
            last = 0
        if milestone <= last:
            return
        self._milestones[job.id] = (job.attempts, milestone)

        await self._emit(
            {
                "event": "job.progress",
                "job_id": job.id,
                "job_type": job.type,
                "status": "in_progress",
                "progress": milestone,
            }
        )

    async def _emit(self, notification: dict[str, Any]) -> None:
        notification["timestamp"] = utcnow().isoformat()
        try:
            fields = {k: v for k, v in notification.items() if k != "event"}
            logger.info(
                "Job notification", notification_event=notification["event"], **fields
            )
            if self.webhook_url:
                await self._post(notification)
        except Exception:
            logger.exception(
                "Failed to deliver job notification",
                job_id=notification.get("job_id"),
                notification_event=notification.get("event"),
            )

    async def _post(self, notification: dict[str, Any]) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        try:
            response = await self._client.post(self.webhook_url, json=notification)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Notification webhook failed",
                job_id=notification.get("job_id"),
                url=self.webhook_url,
                error=str(e),
            )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
