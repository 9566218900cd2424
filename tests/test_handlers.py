import json
import re

import pytest

from api.v1.core.exceptions import ValidationError
from api.v1.infra.jobs.handlers import (
    BatchAnalysisProcessor,
    ExportProcessor,
    MaintenanceCleanupProcessor,
    rows_to_csv,
    rows_to_json,
)
from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.models import JobStatus
from api.v1.infra.jobs.registry_init import register_job_processors


class FakeAnalysisClient:
    def __init__(self, missing: set[str] | None = None):
        self.missing = missing or set()
        self.calls: list[str] = []
        self.closed = False

    async def analyze(self, owner: str, repo: str) -> dict:
        name = f"{owner}/{repo}"
        self.calls.append(name)
        if name in self.missing:
            raise LookupError(f"Repository {name} not found")
        return {"score": 80, "language": "Python"}

    async def aclose(self) -> None:
        self.closed = True


class FakeExportSource:
    def __init__(self, rows: list[dict]):
        self.rows = rows
        self.requests: list[tuple] = []

    async def fetch_rows(self, export_type, user_id, filters):
        self.requests.append((export_type, user_id, filters))
        return self.rows


class ProgressRecorder:
    def __init__(self):
        self.values: list[int] = []

    async def __call__(self, progress: int) -> None:
        self.values.append(progress)


def _repos(*names: str) -> list[dict]:
    return [{"owner": n.split("/")[0], "repo": n.split("/")[1]} for n in names]


class TestBatchAnalysisProcessor:
    """Batch analysis over many repositories."""

    async def test_tallies_successes_and_failures(self):
        client = FakeAnalysisClient(missing={"octocat/missing"})
        processor = BatchAnalysisProcessor(client, item_delay_ms=0)
        job = Job.create(
            "batch-analysis",
            {"repositories": _repos("octocat/hello", "octocat/missing", "octocat/world")},
        )
        progress = ProgressRecorder()

        result = await processor.process(job, progress)

        assert result["total_repositories"] == 3
        assert result["successful_analyses"] == 2
        assert result["failed_analyses"] == 1
        assert [r["status"] for r in result["results"]] == ["success", "failed", "success"]
        assert result["results"][1]["repository"] == "octocat/missing"
        assert "not found" in result["results"][1]["error"]
        assert result["results"][0]["analysis"]["score"] == 80
        assert progress.values == [34, 67, 100]
        assert client.calls == ["octocat/hello", "octocat/missing", "octocat/world"]

    async def test_empty_batch(self):
        processor = BatchAnalysisProcessor(FakeAnalysisClient(), item_delay_ms=0)
        job = Job.create("batch-analysis", {"repositories": []})
        progress = ProgressRecorder()

        result = await processor.process(job, progress)

        assert result["total_repositories"] == 0
        assert result["results"] == []
        assert progress.values == []

    def test_invalid_payload(self):
        processor = BatchAnalysisProcessor(FakeAnalysisClient())

        with pytest.raises(ValidationError) as exc_info:
            processor.validate_payload({"repositories": [{"owner": "octocat"}]})

        assert exc_info.value.details["job_type"] == "batch-analysis"
        assert exc_info.value.details["errors"]

    async def test_aclose_closes_client(self):
        client = FakeAnalysisClient()
        await BatchAnalysisProcessor(client).aclose()

        assert client.closed


class TestExportProcessor:
    """CSV and JSON exports."""

    ROWS = [
        {"id": 1, "name": "alpha", "tags": ["x", "y"]},
        {"id": 2, "name": "beta, inc", "score": None},
    ]

    async def test_csv_export(self):
        source = FakeExportSource(self.ROWS)
        processor = ExportProcessor(source)
        job = Job.create(
            "export",
            {"format": "csv", "export_type": "analyses", "filters": {"language": "Python"}},
        )
        progress = ProgressRecorder()

        result = await processor.process(job, progress)

        assert result["format"] == "csv"
        assert result["record_count"] == 2
        assert result["data"] == 'id,name,tags,score\n1,alpha,x; y,\n2,"beta, inc",,'
        assert re.fullmatch(r"analyses_export_\d+\.csv", result["file_name"])
        assert progress.values == [10, 50, 90]
        assert source.requests == [("analyses", None, {"language": "Python"})]

    async def test_json_export(self):
        processor = ExportProcessor(FakeExportSource(self.ROWS))
        job = Job.create("export", {"format": "json", "export_type": "repositories"})

        result = await processor.process(job, ProgressRecorder())

        document = json.loads(result["data"])
        assert document["record_count"] == 2
        assert document["data"] == self.ROWS
        assert "exported_at" in document
        assert result["file_name"].endswith(".json")

    async def test_empty_export(self):
        processor = ExportProcessor(FakeExportSource([]))
        job = Job.create("export", {"format": "csv", "export_type": "analyses"})

        result = await processor.process(job, ProgressRecorder())

        assert result["record_count"] == 0
        assert result["data"] == ""

    def test_unsupported_format(self):
        processor = ExportProcessor(FakeExportSource([]))

        with pytest.raises(ValidationError):
            processor.validate_payload({"format": "xml", "export_type": "analyses"})

    def test_saved_export_requires_user(self):
        processor = ExportProcessor(FakeExportSource([]))

        with pytest.raises(ValidationError):
            processor.validate_payload({"format": "csv", "export_type": "saved"})

        payload = processor.validate_payload(
            {"format": "csv", "export_type": "saved", "user_id": "user-1"}
        )
        assert payload.user_id == "user-1"


class TestSerialisers:
    def test_csv_header_is_union_of_keys(self):
        csv_text = rows_to_csv([{"a": 1}, {"b": 2}])

        assert csv_text.splitlines() == ["a,b", "1,", ",2"]

    def test_json_document(self):
        document = json.loads(rows_to_json([{"a": 1}]))

        assert document["record_count"] == 1
        assert document["data"] == [{"a": 1}]


class TestQueueIntegration:
    """Reference processors running through the queue."""

    async def test_invalid_payload_rejected_at_submission(self, settings, job_queue):
        register_job_processors(
            job_queue, settings, export_source=FakeExportSource([])
        )

        with pytest.raises(ValidationError):
            await job_queue.add_job("export", {"format": "xml", "export_type": "analyses"})

    async def test_registration_depends_on_collaborators(self, settings, job_queue):
        register_job_processors(job_queue, settings)

        assert job_queue.registered_types() == ["maintenance-cleanup"]

    async def test_batch_analysis_job(self, settings, job_queue, sink):
        register_job_processors(
            job_queue,
            settings,
            analysis_client=FakeAnalysisClient(missing={"a/b"}),
        )
        job = await job_queue.add_job(
            "batch-analysis", {"repositories": _repos("a/b", "c/d")}
        )

        await job_queue.process_next()

        stored = await job_queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.result["successful_analyses"] == 1
        assert stored.result["failed_analyses"] == 1
        assert [e[2] for e in sink.of_kind("progress")] == [50, 100]

    async def test_maintenance_job(self, settings, job_queue):
        register_job_processors(job_queue, settings)
        finished = await job_queue.add_job("maintenance-cleanup", {"dry_run": True})
        await job_queue.process_next()

        job = await job_queue.add_job(
            "maintenance-cleanup", {"tasks": ["cleanup_jobs"], "older_than_ms": 0}
        )
        await job_queue.process_next()

        stored = await job_queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.result["results"]["cleanup_jobs"] == {
            "status": "completed",
            "deleted_count": 1,
        }
        assert await job_queue.get_job(finished.id) is None
