"""
Registers all job handlers with the global job registry.
"""

from taskqueue.config.logging import get_logger
from taskqueue.core.registries import JobRegistry, job_registry
from taskqueue.jobs.handlers import (
    BulkStatusUpdateHandler,
    OverdueNotificationHandler,
    StatusUpdateHandler,
)
from taskqueue.jobs.models import JobType

logger = get_logger(__name__)


def register_job_handlers(registry: JobRegistry = job_registry) -> JobRegistry:
    """Register one handler per job type and verify none is missing."""

    if registry.is_frozen():
        return registry

    registry.register(JobType.STATUS_UPDATE.value, StatusUpdateHandler())
    registry.register(JobType.OVERDUE_NOTIFICATION.value, OverdueNotificationHandler())
    registry.register(JobType.BULK_STATUS_UPDATE.value, BulkStatusUpdateHandler())

    registry.ensure_complete(t.value for t in JobType)

    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry


# Auto-register handlers when module is imported
register_job_handlers()
