"""
Standalone job worker process.

Runs the queue's worker pool without the HTTP API:

    python -m api.v1.infra.jobs.worker    # until SIGINT/SIGTERM
    jobq worker --once                     # drain due jobs and exit
"""

import asyncio
import signal

from api.config.logging import get_logger, setup_logging
from api.config.settings import Settings, settings as default_settings
from api.infra.database import Database
from api.v1.infra.jobs.queue import JobQueue
from api.v1.infra.jobs.registry_init import register_job_processors

logger = get_logger(__name__)


async def run_worker(settings: Settings | None = None, once: bool = False) -> int:
    """
    Run a worker until stopped by a signal.

    With ``once`` the worker processes jobs that are due right now, one at
    a time, and returns how many it ran.
    """
    settings = settings or default_settings
    database = Database(settings)
    if settings.db_auto_create:
        await database.create_tables()

    queue = JobQueue(settings, database)
    register_job_processors(queue, settings)
    processed = 0

    try:
        if once:
            while await queue.process_next() is not None:
                processed += 1
            logger.info("Worker drained queue", processed=processed)
            return processed

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        await queue.start()
        await stop.wait()
        logger.info("Shutdown signal received", worker_id=queue.worker_id)
    finally:
        await queue.close()
        await database.close()

    return processed


if __name__ == "__main__":
    setup_logging(default_settings)
    asyncio.run(run_worker(default_settings))
