"""
Periodic scan for overdue tasks.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from taskqueue.config.logging import get_logger

if TYPE_CHECKING:
    from taskqueue.jobs.gateway import EnqueueGateway

logger = get_logger(__name__)


class OverdueScanner:
    """Collects tasks past their due date into one overdue-notification job."""

    def __init__(self, gateway: "EnqueueGateway", batch_limit: int = 1000):
        self.gateway = gateway
        self.batch_limit = batch_limit

    async def scan(self, now: datetime | None = None) -> UUID | None:
        """Enqueue a notification batch; returns its job id, or None if nothing is overdue."""
        now = now or datetime.now(UTC)

        async with self.gateway.transaction() as uow:
            overdue = await uow.tasks.find_overdue(now, limit=self.batch_limit)
            if not overdue:
                logger.debug("No overdue tasks found")
                return None

            job_id = await uow.enqueue_overdue_batch([task.id for task in overdue])

        logger.info("Overdue tasks queued", job_id=str(job_id), task_count=len(overdue))
        return job_id
