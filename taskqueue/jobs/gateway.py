"""
Enqueue gateway: the transactional seam between task writes and job creation.

Every flow that changes a task and needs a background side effect goes
through ``EnqueueGateway.transaction()``. The task write and the job row
share one database transaction, so either both are committed or neither is.
"""

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskqueue.config.logging import get_logger
from taskqueue.core.exceptions import NotFoundError
from taskqueue.jobs.payloads import (
    BulkStatusUpdatePayload,
    JobPayload,
    OverdueNotificationPayload,
    StatusUpdatePayload,
)
from taskqueue.jobs.store import JobStore
from taskqueue.tasks.cache import TaskCache
from taskqueue.tasks.models import Task, TaskStatus
from taskqueue.tasks.repository import TaskRepository

logger = get_logger(__name__)

R = TypeVar("R")


@dataclass
class BulkCompletion:
    """Outcome of a bulk completion: the tasks that moved and their follow-up jobs."""

    task_ids: list[str] = field(default_factory=list)
    job_ids: list[UUID] = field(default_factory=list)


@dataclass
class UnitOfWork:
    """Handle given to code running inside a gateway transaction."""

    session: AsyncSession
    tasks: TaskRepository
    jobs: JobStore
    touched_task_ids: set[str] = field(default_factory=set)

    async def enqueue(self, payload: JobPayload, **options: Any) -> UUID:
        return await self.jobs.enqueue(payload, session=self.session, **options)

    async def enqueue_bulk(self, payloads: Sequence[JobPayload]) -> list[UUID]:
        return await self.jobs.enqueue_bulk(payloads, session=self.session)

    async def enqueue_task_created(self, task_id: str, status: str) -> UUID:
        return await self.enqueue(StatusUpdatePayload(task_id=task_id, status=status))

    async def enqueue_task_status_changed(self, task_id: str, new_status: str) -> UUID:
        return await self.enqueue(StatusUpdatePayload(task_id=task_id, status=new_status))

    async def enqueue_overdue_batch(self, task_ids: Sequence[str]) -> UUID:
        return await self.enqueue(
            OverdueNotificationPayload(overdue_task_ids=list(task_ids))
        )

    async def complete_tasks(self, task_ids: Sequence[str]) -> BulkCompletion:
        """
        Mark tasks completed and enqueue one status update per task that moved.

        Tasks already completed are left alone. Raises NotFoundError when no
        task transitions.
        """
        target = TaskStatus.COMPLETED.value
        transitioned = await self.tasks.bulk_transition(task_ids, target)
        self.touched_task_ids.update(task_ids)

        if not transitioned:
            raise NotFoundError("Task not found", {"task_ids": list(task_ids)})

        # Follow-up jobs carry the status the tasks now have
        job_ids = await self.enqueue_bulk(
            [StatusUpdatePayload(task_id=task.id, status=target) for task in transitioned]
        )
        return BulkCompletion(task_ids=[task.id for task in transitioned], job_ids=job_ids)


class EnqueueGateway:
    """Entry point used by request handling code and by job handlers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job_store: JobStore,
        cache: TaskCache | None = None,
    ):
        self.session_factory = session_factory
        self.job_store = job_store
        self.cache = cache

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        """Open a transaction; any exception inside rolls back every write."""
        async with self.session_factory() as session:
            uow = UnitOfWork(
                session=session,
                tasks=TaskRepository(session, self.cache),
                jobs=self.job_store,
            )
            async with session.begin():
                yield uow

        # Drop snapshots a concurrent reader may have cached before commit
        if self.cache is not None and uow.touched_task_ids:
            self.cache.invalidate(*uow.touched_task_ids)

    async def with_transaction(self, fn: Callable[[UnitOfWork], Awaitable[R]]) -> R:
        async with self.transaction() as uow:
            return await fn(uow)

    async def create_task(self, **fields: Any) -> Task:
        """Insert a task and its status-propagation job atomically."""
        async with self.transaction() as uow:
            task = await uow.tasks.save(Task(**fields))
            uow.touched_task_ids.add(task.id)
            await uow.enqueue_task_created(task.id, task.status)

        logger.info("Task created", task_id=task.id, status=task.status)
        return task

    async def update_task_status(self, task_id: str, status: str) -> Task:
        """Change a task's status; a job is enqueued only if the status changed."""
        async with self.transaction() as uow:
            task = await uow.tasks.get(task_id)
            original_status = task.status
            task.status = status
            await uow.tasks.save(task)
            uow.touched_task_ids.add(task.id)

            if status != original_status:
                await uow.enqueue_task_status_changed(task.id, status)

        return task

    async def enqueue_task_created(self, task_id: str, status: str) -> UUID:
        async with self.transaction() as uow:
            return await uow.enqueue_task_created(task_id, status)

    async def enqueue_task_status_changed(self, task_id: str, new_status: str) -> UUID:
        async with self.transaction() as uow:
            return await uow.enqueue_task_status_changed(task_id, new_status)

    async def enqueue_overdue_batch(self, task_ids: Sequence[str]) -> UUID:
        async with self.transaction() as uow:
            return await uow.enqueue_overdue_batch(task_ids)

    async def enqueue_bulk_complete(self, task_ids: Sequence[str]) -> list[UUID]:
        """Complete tasks now; returns the ids of the follow-up status jobs."""
        async with self.transaction() as uow:
            completion = await uow.complete_tasks(task_ids)

        logger.info(
            "Bulk completion committed",
            requested=len(task_ids),
            transitioned=len(completion.task_ids),
        )
        return completion.job_ids

    async def enqueue_bulk_status_update(self, task_ids: Sequence[str]) -> UUID:
        """Defer a bulk completion to the worker pool."""
        async with self.transaction() as uow:
            return await uow.enqueue(BulkStatusUpdatePayload(task_ids=list(task_ids)))

    async def get_task(self, task_id: str) -> dict[str, Any] | None:
        async with self.session_factory() as session:
            return await TaskRepository(session, self.cache).snapshot(task_id)
