import json

import httpx
import pytest

from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.notifications import NotificationService, summarize_result

WEBHOOK_URL = "http://hooks.test/jobs"


def _service(handler, **kwargs) -> NotificationService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NotificationService(webhook_url=WEBHOOK_URL, http_client=client, **kwargs)


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def service(delivered):
    def handler(request: httpx.Request) -> httpx.Response:
        delivered.append(json.loads(request.content))
        return httpx.Response(204)

    return _service(handler)


def _running_job(job_type: str = "export", attempts: int = 1) -> Job:
    return Job(type=job_type, attempts=attempts)


class TestSummaries:
    def test_batch_analysis(self):
        result = {"total_repositories": 3, "successful_analyses": 2, "failed_analyses": 1}

        assert (
            summarize_result("batch-analysis", result)
            == "Analyzed 3 repositories: 2 successful, 1 failed"
        )

    def test_export(self):
        result = {"format": "csv", "record_count": 12}

        assert summarize_result("export", result) == "Exported 12 records in CSV format"

    def test_other_types(self):
        assert summarize_result("maintenance-cleanup", {"x": 1}) == "Job completed successfully"
        assert summarize_result("export", None) == "Exported 0 records in UNKNOWN format"


class TestNotificationService:
    """Webhook delivery and progress milestones."""

    async def test_completed_notification(self, service, delivered):
        job = _running_job()
        await service.notify_job_complete(job, {"format": "json", "record_count": 2})

        assert len(delivered) == 1
        notification = delivered[0]
        assert notification["event"] == "job.completed"
        assert notification["job_id"] == job.id
        assert notification["job_type"] == "export"
        assert notification["status"] == "completed"
        assert notification["result"] == "Exported 2 records in JSON format"
        assert "timestamp" in notification

    async def test_failed_notification(self, service, delivered):
        job = _running_job()
        await service.notify_job_failed(job, "source unavailable")

        assert delivered[0]["event"] == "job.failed"
        assert delivered[0]["status"] == "failed"
        assert delivered[0]["error"] == "source unavailable"

    async def test_progress_only_on_new_milestones(self, service, delivered):
        job = _running_job()
        for progress in (10, 30, 40, 50, 99, 100):
            await service.notify_job_progress(job, progress)

        assert [n["progress"] for n in delivered] == [25, 50, 75, 100]
        assert {n["status"] for n in delivered} == {"in_progress"}

    async def test_milestones_restart_with_each_attempt(self, service, delivered):
        job = _running_job(attempts=1)
        await service.notify_job_progress(job, 60)
        job.attempts = 2
        await service.notify_job_progress(job, 30)

        assert [n["progress"] for n in delivered] == [50, 25]

    async def test_custom_milestone_step(self, delivered):
        def handler(request):
            delivered.append(json.loads(request.content))
            return httpx.Response(200)

        service = _service(handler, milestone_step=10)
        job = _running_job()
        await service.notify_job_progress(job, 34)

        assert [n["progress"] for n in delivered] == [30]

    def test_invalid_milestone_step(self):
        with pytest.raises(ValueError):
            NotificationService(milestone_step=0)

    async def test_webhook_error_status_is_swallowed(self):
        service = _service(lambda request: httpx.Response(500))

        await service.notify_job_failed(_running_job(), "boom")

    async def test_webhook_transport_error_is_swallowed(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        service = _service(handler)

        await service.notify_job_complete(_running_job(), {})

    async def test_unexpected_sink_error_is_swallowed(self):
        def handler(request):
            raise RuntimeError("sink exploded")

        service = _service(handler)

        await service.notify_job_progress(_running_job(), 50)

    async def test_without_webhook_only_logs(self):
        service = NotificationService()

        await service.notify_job_complete(_running_job(), {})
        await service.aclose()
