import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from api.config.settings import Settings
from api.infra.database import Database
from api.main import create_app
from api.v1.core.exceptions import ValidationError
from api.v1.infra.jobs.job import Job
from api.v1.infra.jobs.models import TERMINAL_STATUSES
from api.v1.infra.jobs.queue import JobQueue


class RecordingSink:
    """Notification sink that keeps every call for assertions."""

    def __init__(self):
        self.events: list[tuple[str, str, Any]] = []

    async def notify_job_complete(self, job: Job, result: Any) -> None:
        self.events.append(("completed", job.id, result))

    async def notify_job_failed(self, job: Job, error: str) -> None:
        self.events.append(("failed", job.id, error))

    async def notify_job_progress(self, job: Job, progress: int) -> None:
        self.events.append(("progress", job.id, progress))

    def of_kind(self, kind: str) -> list[tuple[str, str, Any]]:
        return [event for event in self.events if event[0] == kind]


class EchoProcessor:
    """Reports half-way progress and returns its payload."""

    def __init__(self):
        self.calls = 0

    async def process(self, job, report_progress):
        self.calls += 1
        await report_progress(50)
        return {"echo": job.payload}


class FlakyProcessor:
    """Fails the first ``failures`` attempts, then succeeds."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def process(self, job, report_progress):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"transient failure {self.calls}")
        return {"calls": self.calls}


class FailingProcessor:
    def __init__(self, error: Exception | None = None):
        self.error = error or RuntimeError("boom")
        self.calls = 0

    async def process(self, job, report_progress):
        self.calls += 1
        raise self.error


class SlowProcessor:
    def __init__(self, delay_s: float):
        self.delay_s = delay_s

    async def process(self, job, report_progress):
        await asyncio.sleep(self.delay_s)
        return {"slept": self.delay_s}


class BlockingProcessor:
    """Runs until the test releases it."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def process(self, job, report_progress):
        self.started.set()
        await report_progress(10)
        await self.release.wait()
        return {"finished": True}


class HookedProcessor:
    """Records every lifecycle hook the queue invokes."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.hooks: list[tuple[str, Any]] = []

    async def process(self, job, report_progress):
        await report_progress(40)
        if self.fail:
            raise ValidationError("bad input")
        return {"ok": True}

    async def on_progress(self, job, progress):
        self.hooks.append(("progress", progress))

    async def on_complete(self, job, result):
        self.hooks.append(("complete", result))

    def on_error(self, job, error):
        self.hooks.append(("error", str(error)))


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/jobs.db",
        job_worker_enabled=False,
        job_poll_interval_ms=10,
        job_backoff_base_ms=0,
        batch_item_delay_ms=0,
        notification_webhook_url=None,
        analysis_service_url=None,
        export_source_url=None,
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
async def job_queue(settings, database, sink) -> AsyncGenerator[JobQueue, None]:
    """A queue with no processors and a recording notification sink."""
    queue = JobQueue(settings, database, notifier=sink, worker_id="test-worker")
    yield queue
    await queue.close(timeout_s=1)


@pytest.fixture
def app(settings, database, job_queue):
    """Application wired to the test queue (lifespan is not run)."""
    return create_app(settings, database, job_queue)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def wait_for_terminal(queue: JobQueue, job_id: str, timeout_s: float = 5.0) -> Job:
    """Poll the store until the job reaches a terminal state."""
    deadline = asyncio.get_running_loop().time() + timeout_s
    while True:
        job = await queue.get_job(job_id)
        if job is not None and job.status in TERMINAL_STATUSES:
            return job
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"Job {job_id} still {job.status if job else None}")
        await asyncio.sleep(0.02)

