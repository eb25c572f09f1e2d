"""
Job handlers for task side effects.

Handlers implement the JobHandler protocol and are registered in the job
registry. They report failures by raising the job failure types from
``taskqueue.core.exceptions`` and never touch job rows themselves.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from taskqueue.config.logging import get_logger
from taskqueue.core.exceptions import JobCancelled, NotFoundError, TerminalFailure
from taskqueue.jobs.gateway import EnqueueGateway
from taskqueue.jobs.models import JobType
from taskqueue.jobs.payloads import (
    BulkStatusUpdatePayload,
    OverdueNotificationPayload,
    StatusUpdatePayload,
)
from taskqueue.tasks.notifications import NotificationSender

logger = get_logger(__name__)


@dataclass
class JobContext:
    """Everything a handler may use while executing one job."""

    job_id: UUID
    job_type: JobType
    attempt: int
    gateway: EnqueueGateway
    notifier: NotificationSender
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def raise_if_cancelled(self) -> None:
        """Safe point: stop here if the job was asked to cancel."""
        if self.cancel_event.is_set():
            raise JobCancelled()


class StatusUpdateHandler:
    """
    Write a task's status from a status-update job.

    Payload expected:
    {
        "taskId": "task-id",
        "status": "COMPLETED"
    }
    """

    payload_model = StatusUpdatePayload

    async def handle(
        self, ctx: JobContext, payload: StatusUpdatePayload
    ) -> dict[str, Any] | None:
        ctx.raise_if_cancelled()

        async with ctx.gateway.transaction() as uow:
            # Always re-read: the payload may be older than the row
            task = await uow.tasks.find(payload.task_id)
            if task is None:
                raise TerminalFailure(
                    f"Task with ID {payload.task_id} not found",
                    details={"task_id": payload.task_id},
                )

            task.status = payload.status
            await uow.tasks.save(task)
            uow.touched_task_ids.add(task.id)

        logger.info(
            "Task status propagated",
            job_id=str(ctx.job_id),
            task_id=task.id,
            status=task.status,
        )
        return {"taskId": task.id, "newStatus": task.status}


class OverdueNotificationHandler:
    """
    Send one notification per overdue task.

    A failed notification is logged and skipped; it does not fail the job.
    Ids are notified serially within one job, so producers with very large
    lists should split them across several OverdueNotification jobs.

    Payload expected:
    {
        "overdueTaskIds": ["task-id", ...]
    }
    """

    payload_model = OverdueNotificationPayload

    async def handle(
        self, ctx: JobContext, payload: OverdueNotificationPayload
    ) -> dict[str, Any] | None:
        task_ids = payload.overdue_task_ids

        if not task_ids:
            logger.debug("No overdue tasks to process", job_id=str(ctx.job_id))
            return {
                "processedCount": 0,
                "failedTaskIds": [],
                "message": "No overdue tasks found",
            }

        processed_count = 0
        failed_task_ids: list[str] = []

        for task_id in task_ids:
            ctx.raise_if_cancelled()

            try:
                delivered = await ctx.notifier.notify(task_id)
            except Exception as e:
                logger.warning(
                    "Failed to process task notification",
                    job_id=str(ctx.job_id),
                    task_id=task_id,
                    error=str(e),
                )
                failed_task_ids.append(task_id)
                continue

            if delivered:
                processed_count += 1
            else:
                logger.warning(
                    "Notification sender rejected task",
                    job_id=str(ctx.job_id),
                    task_id=task_id,
                )
                failed_task_ids.append(task_id)

        return {
            "processedCount": processed_count,
            "failedTaskIds": failed_task_ids,
            "message": f"Processed {processed_count} overdue tasks",
        }


class BulkStatusUpdateHandler:
    """
    Mark a set of tasks completed in one statement.

    Tasks that are already completed are skipped. Every task that moves gets
    a follow-up status-update job, enqueued in the same transaction.

    Payload expected:
    {
        "taskIds": ["task-id", ...]
    }
    """

    payload_model = BulkStatusUpdatePayload

    async def handle(
        self, ctx: JobContext, payload: BulkStatusUpdatePayload
    ) -> dict[str, Any] | None:
        ctx.raise_if_cancelled()

        try:
            async with ctx.gateway.transaction() as uow:
                completion = await uow.complete_tasks(payload.task_ids)
        except NotFoundError as e:
            raise TerminalFailure(e.message, details=e.details) from e

        logger.info(
            "Bulk status update completed",
            job_id=str(ctx.job_id),
            requested=len(payload.task_ids),
            transitioned=len(completion.task_ids),
        )

        return {
            "transitionedTaskIds": completion.task_ids,
            "statusUpdateJobIds": [str(job_id) for job_id in completion.job_ids],
        }
