from typing import Protocol
from uuid import UUID

from taskqueue.config.logging import get_logger

logger = get_logger(__name__)


class JobObserver(Protocol):
    """Receives terminal job outcomes from the worker pool."""

    def on_job_completed(self, job_id: UUID) -> None: ...

    def on_job_failed_final(self, job_id: UUID, error: str) -> None: ...


class LoggingJobObserver:
    """Default observer that writes terminal outcomes to the structured log."""

    def on_job_completed(self, job_id: UUID) -> None:
        logger.info("Job completed", job_id=str(job_id))

    def on_job_failed_final(self, job_id: UUID, error: str) -> None:
        logger.error("Job failed permanently", job_id=str(job_id), error=error)
