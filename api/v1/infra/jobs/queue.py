"""
Job queue: submission, querying and a bounded in-process worker pool.

Features:
- Durable store is the only source of truth; claims are compare-and-set
- Bounded concurrency with early wakeup on local submissions
- Exponential backoff (with optional jitter) between attempts
- Optional per-job timeout
- Heartbeats and visibility timeout for stuck job recovery
- Sink and hook failures never change a job's state
"""

import asyncio
import inspect
import json
import os
import random
import socket
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import OperationalError

from api.config.logging import get_logger, job_log_context
from api.config.settings import Settings
from api.infra.database import Database
from api.v1.core.exceptions import (
    InvalidStateError,
    JobTimeoutError,
    NotFoundError,
    QueueUnavailableError,
    TransientProcessingError,
    UnknownJobTypeError,
    ValidationError,
    is_retryable,
    public_error_message,
)
from api.v1.core.registries import JobProcessor, ProcessorRegistry
from api.v1.infra.jobs.job import Job, JobOptions
from api.v1.infra.jobs.metrics import DAY_MS, JobMetrics
from api.v1.infra.jobs.models import JobStatus, utcnow
from api.v1.infra.jobs.notifications import NotificationService, NotificationSink
from api.v1.infra.jobs.store import JobStore

logger = get_logger(__name__)

_CANCEL_ATTEMPTS = 5


@dataclass
class QueueStats:
    """Point-in-time queue depth by state."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class JobQueue:
    """
    Orchestrates jobs between callers, the durable store and processors.

    Construct one per application (or per test) and pass it where needed;
    several queues may share a database, each with its own worker id.
    """

    def __init__(
        self,
        settings: Settings,
        database: Database,
        metrics: JobMetrics | None = None,
        notifier: NotificationSink | None = None,
        worker_id: str | None = None,
    ):
        self.settings = settings
        self.database = database
        self.store = JobStore(database)
        self.metrics = metrics or JobMetrics(
            retention_ms=settings.metrics_retention_ms,
            max_samples=settings.metrics_max_samples,
        )
        self.notifier = notifier or NotificationService.from_settings(settings)
        self.processors = ProcessorRegistry()
        self.worker_id = worker_id or f"{socket.gethostname()}-{os.getpid()}-{id(self)}"

        self.running = False
        self.active_jobs: dict[str, asyncio.Task] = {}
        self._slots: asyncio.Semaphore | None = None
        self._wakeup = asyncio.Event()
        self._loops: list[asyncio.Task] = []

    # Processor registration

    def register_processor(self, job_type: str, processor: JobProcessor) -> None:
        """Bind a processor to a job type; registering again replaces it."""
        replaced = job_type in self.processors
        self.processors.register(job_type, processor)
        logger.info(
            "Registered job processor",
            job_type=job_type,
            processor=processor.__class__.__name__,
            replaced=replaced,
        )

    def registered_types(self) -> list[str]:
        return self.processors.list()

    # Submission and queries

    async def add_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        options: JobOptions | None = None,
        requested_by: str | None = None,
    ) -> Job:
        """Validate and persist a queued job; returns without waiting for it."""
        if not self.settings.queue_enabled:
            raise QueueUnavailableError("Job queue is disabled")

        payload = payload or {}
        if job_type in self.processors:
            processor = self.processors.get(job_type)
            validate = getattr(processor, "validate_payload", None)
            if validate is not None:
                validate(payload)
        elif self.settings.job_reject_unknown_types:
            raise UnknownJobTypeError(job_type)
        else:
            logger.warning(
                "Accepting job with no local processor",
                job_type=job_type,
                worker_id=self.worker_id,
            )

        if options is None:
            options = JobOptions(
                priority=self.settings.job_default_priority,
                max_attempts=self.settings.job_max_attempts,
            )
        job = Job.create(job_type, payload, options, requested_by=requested_by)

        try:
            await self.store.add(job)
        except OperationalError as e:
            logger.error("Job store unavailable on submit", job_type=job_type, exc_info=True)
            raise QueueUnavailableError() from e

        self._wakeup.set()
        logger.info(
            "Job enqueued",
            job_id=job.id,
            job_type=job.type,
            priority=job.priority,
            delay_ms=job.delay_ms,
            max_attempts=job.max_attempts,
        )
        return job

    async def get_job(self, job_id: str) -> Job | None:
        return await self.store.get(job_id)

    async def get_job_status(self, job_id: str) -> JobStatus | None:
        job = await self.store.get(job_id)
        return job.status if job is not None else None

    async def cancel_job(self, job_id: str) -> Job:
        """
        Cancel a queued or processing job.

        Cancellation of a processing job is cooperative: the running
        processor is not interrupted, but its outcome is discarded because
        the worker no longer owns the row.
        """
        for _ in range(_CANCEL_ATTEMPTS):
            job = await self.store.get(job_id)
            if job is None:
                raise NotFoundError(f"Job not found: {job_id}", {"job_id": job_id})

            previous = job.status
            job.mark_cancelled()
            if await self.store.cancel(job_id, previous):
                logger.info(
                    "Job cancelled",
                    job_id=job_id,
                    job_type=job.type,
                    previous_status=previous.value,
                    running_here=job_id in self.active_jobs,
                )
                return job

        raise InvalidStateError(
            f"Job {job_id} changed state while being cancelled", {"job_id": job_id}
        )

    async def get_stats(self) -> QueueStats:
        counts = await self.store.counts()
        return QueueStats(
            waiting=counts[JobStatus.QUEUED.value] - counts["delayed"],
            active=counts[JobStatus.PROCESSING.value],
            completed=counts[JobStatus.COMPLETED.value],
            failed=counts[JobStatus.FAILED.value],
            delayed=counts["delayed"],
        )

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        return await self.store.list_jobs(
            status=status, job_type=job_type, limit=limit, offset=offset
        )

    async def cleanup(self, older_than_ms: int = DAY_MS) -> int:
        """Purge terminal jobs that finished more than ``older_than_ms`` ago."""
        if older_than_ms < 0:
            raise ValidationError(
                "older_than_ms must not be negative", {"older_than_ms": older_than_ms}
            )
        return await self.store.cleanup(older_than_ms)

    # Worker pool

    async def start(self) -> None:
        """Start the dispatch, heartbeat and maintenance loops."""
        if self.running:
            raise RuntimeError("Job queue is already running")

        self.running = True
        self._slots = asyncio.Semaphore(self.settings.job_concurrency)
        self._loops = [
            asyncio.create_task(self._dispatch_loop()),
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._maintenance_loop()),
        ]
        logger.info(
            "Starting job queue workers",
            worker_id=self.worker_id,
            queue_name=self.settings.queue_name,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            job_types=self.registered_types(),
        )

    async def close(self, timeout_s: float = 30.0) -> None:
        """Stop claiming, give active jobs ``timeout_s`` to finish, then cancel."""
        if self.running:
            logger.info("Stopping job queue workers", worker_id=self.worker_id)
            self.running = False
            self._wakeup.set()

            for task in self._loops:
                task.cancel()
            await asyncio.gather(*self._loops, return_exceptions=True)
            self._loops = []

            if self.active_jobs:
                _, pending = await asyncio.wait(
                    list(self.active_jobs.values()), timeout=timeout_s
                )
                if pending:
                    # Left in processing; stuck job recovery releases them
                    logger.warning(
                        "Job queue stopped with active jobs",
                        worker_id=self.worker_id,
                        active_jobs=len(pending),
                    )
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)

        for job_type in self.registered_types():
            await self._call_hook(self.processors.get(job_type), "aclose")
        aclose = getattr(self.notifier, "aclose", None)
        if aclose is not None:
            await aclose()

    def worker_status(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "concurrency": self.settings.job_concurrency,
            "active_jobs": len(self.active_jobs),
            "job_types": self.registered_types(),
        }

    async def process_next(self) -> Job | None:
        """
        Claim and run one eligible job, waiting for its attempt to finish.

        Returns the job in its post-attempt state, or None when nothing is
        due. Store failures propagate to the caller. The job counts as active
        while it runs, and keeps its own heartbeat when the pool is stopped.
        """
        job = await self._claim_next()
        if job is None:
            return None

        task = asyncio.create_task(self._run(job))
        self.active_jobs[job.id] = task
        heartbeat = None
        if not self.running:
            heartbeat = asyncio.create_task(self._heartbeat_job(job.id))
        try:
            await task
        finally:
            self.active_jobs.pop(job.id, None)
            if heartbeat is not None:
                heartbeat.cancel()
                await asyncio.gather(heartbeat, return_exceptions=True)
        return job

    async def _dispatch_loop(self) -> None:
        poll_s = self.settings.job_poll_interval_ms / 1000
        while self.running:
            try:
                await self._slots.acquire()
                job = None
                self._wakeup.clear()
                try:
                    job = await self._claim_next()
                finally:
                    if job is None:
                        self._slots.release()

                if job is None:
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), poll_s)
                    except asyncio.TimeoutError:
                        pass
                    continue

                self.active_jobs[job.id] = asyncio.create_task(
                    self._run_and_release(job)
                )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in dispatch loop", worker_id=self.worker_id)
                await asyncio.sleep(max(poll_s, 1.0))

    async def _run_and_release(self, job: Job) -> None:
        try:
            await self._run(job)
        except Exception:
            logger.exception(
                "Job dispatch failed", job_id=job.id, worker_id=self.worker_id
            )
        finally:
            self.active_jobs.pop(job.id, None)
            self._slots.release()
            # A freed slot may let another due job start straight away
            self._wakeup.set()

    async def _claim_next(self) -> Job | None:
        candidates = await self.store.next_eligible(limit=self.settings.job_concurrency)
        for job in candidates:
            if job.type not in self.processors:
                await self._reject_unroutable(job)
                continue
            if await self.store.claim(job, self.worker_id):
                job.mark_processing()
                return job
        return None

    async def _reject_unroutable(self, job: Job) -> None:
        error = UnknownJobTypeError(job.type)
        job.reject(error.message)
        if not await self.store.reject(job):
            return

        logger.error(
            "Rejected job with no registered processor",
            job_id=job.id,
            job_type=job.type,
            worker_id=self.worker_id,
        )
        self.metrics.record_job_failed(job, error.message)
        await self._notify("notify_job_failed", job, error.message)

    # Execution

    async def _run(self, job: Job) -> None:
        processor = self.processors.get(job.type)
        self.metrics.record_job_start(job)

        with job_log_context(
            job.id, job.type, worker_id=self.worker_id, attempt=job.attempts
        ):
            logger.info("Processing job started", max_attempts=job.max_attempts)
            try:
                result = await self._invoke(processor, job)
                self._check_serializable(result)
            except Exception as e:
                await self._handle_failure(job, processor, e)
            else:
                await self._handle_success(job, processor, result)

    async def _invoke(self, processor: JobProcessor, job: Job) -> Any:
        async def report_progress(progress: int) -> None:
            await self._report_progress(job, processor, progress)

        call = processor.process(job, report_progress)
        if job.timeout_ms is None:
            return await call
        try:
            return await asyncio.wait_for(call, job.timeout_ms / 1000)
        except asyncio.TimeoutError:
            raise JobTimeoutError(job.timeout_ms) from None

    @staticmethod
    def _check_serializable(result: Any) -> None:
        try:
            json.dumps(result)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Job result is not JSON serializable: {e}") from e

    async def _report_progress(
        self, job: Job, processor: JobProcessor, progress: int
    ) -> None:
        # Raises into the processor for invalid values or a finished attempt
        if not job.update_progress(progress):
            return
        if not await self.store.update_progress(job.id, self.worker_id, job.progress):
            logger.debug("Progress not persisted, job no longer owned", progress=progress)
            return

        await self._call_hook(processor, "on_progress", job, job.progress)
        await self._notify("notify_job_progress", job, job.progress)

    async def _handle_success(
        self, job: Job, processor: JobProcessor, result: Any
    ) -> None:
        job.mark_complete(result)
        if not await self.store.save_outcome(job, self.worker_id):
            logger.warning("Discarding result of job no longer owned by this worker")
            return

        self.metrics.record_job_complete(job)
        logger.info("Processing job completed successfully")
        await self._call_hook(processor, "on_complete", job, result)
        await self._notify("notify_job_complete", job, result)

    async def _handle_failure(
        self, job: Job, processor: JobProcessor, exc: Exception
    ) -> None:
        message = public_error_message(exc)
        retryable = is_retryable(exc)
        logger.warning(
            "Job attempt failed", error=message, retryable=retryable, exc_info=exc
        )

        self.metrics.record_job_failed(job, message)
        job.mark_failed(message)

        if retryable and job.can_retry():
            delay_s = self._retry_delay(job.attempts)
            job.requeue()
            run_at = utcnow() + timedelta(seconds=delay_s)
            if await self.store.requeue(job, self.worker_id, run_at):
                logger.info(
                    "Job scheduled for retry",
                    next_run_at=run_at.isoformat(),
                    delay_ms=int(delay_s * 1000),
                )
            else:
                logger.warning("Retry dropped, job no longer owned by this worker")
            return

        if not await self.store.save_outcome(job, self.worker_id):
            logger.warning("Discarding failure of job no longer owned by this worker")
            return

        logger.error("Job failed permanently", error=message, attempts=job.attempts)
        await self._call_hook(processor, "on_error", job, exc)
        await self._notify("notify_job_failed", job, message)

    def _retry_delay(self, attempts: int) -> float:
        """Backoff in seconds before the attempt after ``attempts``."""
        base = self.settings.job_backoff_base_ms / 1000
        delay = min(self.settings.job_max_backoff_s, base * (2 ** (attempts - 1)))

        jitter = self.settings.job_backoff_jitter
        if jitter:
            delay += delay * jitter * (2 * random.random() - 1)
        return max(0.0, delay)

    async def _call_hook(self, processor: JobProcessor, name: str, *args: Any) -> None:
        hook = getattr(processor, name, None)
        if hook is None:
            return
        try:
            outcome = hook(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Processor hook failed", hook=name)

    async def _notify(self, method: str, *args: Any) -> None:
        if self.notifier is None:
            return
        try:
            await getattr(self.notifier, method)(*args)
        except Exception:
            logger.exception("Notification sink failed", method=method)

    # Background loops

    async def _heartbeat_loop(self) -> None:
        interval = self.settings.job_heartbeat_interval_s
        while self.running:
            await asyncio.sleep(interval)
            try:
                await self.store.heartbeat(self.worker_id, list(self.active_jobs))
            except Exception:
                logger.exception("Error updating heartbeats", worker_id=self.worker_id)

    async def _heartbeat_job(self, job_id: str) -> None:
        interval = self.settings.job_heartbeat_interval_s
        while True:
            await asyncio.sleep(interval)
            try:
                await self.store.heartbeat(self.worker_id, [job_id])
            except Exception:
                logger.exception(
                    "Error updating heartbeat", job_id=job_id, worker_id=self.worker_id
                )

    async def _maintenance_loop(self) -> None:
        interval = self.settings.job_maintenance_interval_s
        while self.running:
            try:
                await self.run_maintenance()
            except Exception:
                logger.exception("Error in queue maintenance", worker_id=self.worker_id)
            await asyncio.sleep(interval)

    async def run_maintenance(self) -> dict[str, int]:
        """Recover stuck jobs and trim old timing samples."""
        requeued, failed = await self.store.recover_stuck(
            self.settings.job_visibility_timeout_s
        )
        for job in failed:
            await self._fail_abandoned(job)

        trimmed = self.metrics.clear_old_timings()
        if requeued:
            # Recovered jobs are due immediately
            self._wakeup.set()
        return {
            "recovered_jobs": requeued + len(failed),
            "failed_jobs": len(failed),
            "trimmed_timings": trimmed,
        }

    async def _fail_abandoned(self, job: Job) -> None:
        """Terminal failure side effects for a job whose worker went away."""
        error = TransientProcessingError(job.error or "Worker heartbeat lost")
        logger.error(
            "Job failed permanently after its worker stopped",
            job_id=job.id,
            job_type=job.type,
            attempts=job.attempts,
            worker_id=self.worker_id,
        )
        self.metrics.record_job_failed(job, error.message)
        if job.type in self.processors:
            await self._call_hook(self.processors.get(job.type), "on_error", job, error)
        await self._notify("notify_job_failed", job, error.message)
