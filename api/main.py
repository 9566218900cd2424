from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError

from api.config.logging import get_logger, setup_logging
from api.config.settings import Settings, settings as default_settings
from api.infra.database import Database
from api.v1.core.exceptions import (
    JobServiceException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_service_exception_handler,
    request_validation_exception_handler,
    store_unavailable_exception_handler,
)
from api.v1.healthz import router as health_router
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.jobs.registry_init import register_job_processors
from api.v1.infra.jobs.routes import router as jobs_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    database: Database = app.state.database
    queue: JobQueue = app.state.job_queue

    if settings.db_auto_create:
        await database.create_tables()

    if settings.job_worker_enabled:
        await queue.start()
    else:
        logger.info("In-process job worker disabled", worker_id=queue.worker_id)

    try:
        yield
    finally:
        await queue.close()
        await database.close()


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    queue: JobQueue | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Durable background job queue with retries, progress and metrics",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # The queue is owned by the app and reached through app.state
    if queue is None:
        database = database or Database(settings)
        queue = JobQueue(settings, database)
        register_job_processors(queue, settings)
    app.state.settings = settings
    app.state.database = database or queue.database
    app.state.job_queue = queue

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(JobServiceException, job_service_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(OperationalError, store_unavailable_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    # Freeze processors in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        queue.processors.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
