"""
Processor registration for a job queue.
"""

import logging

from api.config.settings import Settings
from api.v1.infra.jobs.collaborators import (
    AnalysisClient,
    ExportDataSource,
    build_analysis_client,
    build_export_source,
)
from api.v1.infra.jobs.handlers import (
    BatchAnalysisProcessor,
    ExportProcessor,
    MaintenanceCleanupProcessor,
)
from api.v1.infra.jobs.queue import JobQueue

logger = logging.getLogger(__name__)


def register_job_processors(
    queue: JobQueue,
    settings: Settings,
    analysis_client: AnalysisClient | None = None,
    export_source: ExportDataSource | None = None,
) -> None:
    """Register every processor whose collaborators are available."""

    logger.info("Registering job processors")

    analysis_client = analysis_client or build_analysis_client(settings)
    if analysis_client is not None:
        queue.register_processor(
            BatchAnalysisProcessor.job_type,
            BatchAnalysisProcessor(analysis_client, settings.batch_item_delay_ms),
        )

    export_source = export_source or build_export_source(settings)
    if export_source is not None:
        queue.register_processor(ExportProcessor.job_type, ExportProcessor(export_source))

    # Maintenance job processors
    queue.register_processor(
        MaintenanceCleanupProcessor.job_type,
        MaintenanceCleanupProcessor(queue, settings.job_cleanup_after_ms),
    )

    logger.info(
        "Job processors registered",
        extra={"registered_processors": queue.registered_types()},
    )
