from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.config.logging import get_logger
from api.config.settings import Settings, SettingsDep
from api.infra.database import Database
from api.v1.core.exceptions import create_success_response

logger = get_logger(__name__)

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Queue depth and local worker status."""

    available: bool
    worker_id: str | None = None
    worker_running: bool = False
    active_jobs: int = 0
    concurrency: int = 0
    job_types: list[str] = []
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    failed: int = 0


class HealthResponse(BaseModel):
    """Health response with database and queue status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    queue: QueueHealth


@router.get("/healthz", response_model=dict)
async def health_check(request: Request, settings: Settings = SettingsDep):
    """Health check endpoint with database and queue status."""

    database: Database | None = getattr(request.app.state, "database", None)
    queue = getattr(request.app.state, "job_queue", None)

    db_health = await _check_database_health(database)
    queue_health = QueueHealth(available=queue is not None and settings.queue_enabled)

    if queue is not None:
        queue_health = QueueHealth(
            available=settings.queue_enabled, **_worker_fields(queue.worker_status())
        )
        if db_health.connected:
            try:
                stats = await queue.get_stats()
                queue_health.waiting = stats.waiting
                queue_health.active = stats.active
                queue_health.delayed = stats.delayed
                queue_health.failed = stats.failed
            except Exception as e:
                logger.warning("Queue stats unavailable", error=str(e))
                queue_health.available = False

    health = HealthResponse(
        ok=db_health.connected and queue_health.available,
        version=settings.version,
        environment=settings.environment,
        timestamp=datetime.now(UTC).isoformat(),
        database=db_health,
        queue=queue_health,
    )

    return create_success_response(data=health.model_dump())


def _worker_fields(status: dict) -> dict:
    return {
        "worker_id": status["worker_id"],
        "worker_running": status["running"],
        "active_jobs": status["active_jobs"],
        "concurrency": status["concurrency"],
        "job_types": status["job_types"],
    }


async def _check_database_health(database: Database | None) -> DatabaseHealth:
    """Check database connectivity and response time."""
    if database is None:
        return DatabaseHealth(connected=False, error="Database not initialized")

    start_time = datetime.now(UTC)

    try:
        await database.ping()

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return DatabaseHealth(connected=False, error=str(e))
