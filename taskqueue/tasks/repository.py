"""
Task Repository used by the enqueue gateway and the job handlers.

All statements are built with SQLAlchemy expressions so ids and statuses
travel as bound parameters, including the bulk transition.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskqueue.config.logging import get_logger
from taskqueue.core.exceptions import NotFoundError
from taskqueue.tasks.cache import TaskCache
from taskqueue.tasks.models import Task, TaskStatus

logger = get_logger(__name__)


class TaskNotFound(NotFoundError):
    """Raised when a task id does not resolve to a row."""

    def __init__(self, task_id: str):
        super().__init__(f"Task with ID {task_id} not found", {"task_id": task_id})
        self.task_id = task_id


class TaskRepository:
    """Session-scoped access to the tasks table."""

    def __init__(self, session: AsyncSession, cache: TaskCache | None = None):
        self.session = session
        self.cache = cache

    async def find(self, task_id: str) -> Task | None:
        """Load the current row, bypassing both the cache and the identity map."""
        result = await self.session.execute(
            select(Task)
            .where(Task.id == task_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, task_id: str) -> Task:
        task = await self.find(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    async def snapshot(self, task_id: str) -> dict[str, Any] | None:
        """Read-only view of a task, served from the cache when possible."""
        if self.cache is not None:
            cached = self.cache.get(task_id)
            if cached is not None:
                return cached

        task = await self.find(task_id)
        if task is None:
            return None

        snapshot = task.to_dict()
        if self.cache is not None:
            self.cache.put(task_id, snapshot)
        return snapshot

    async def save(self, task: Task) -> Task:
        self.session.add(task)
        await self.session.flush()
        self._invalidate(task.id)
        return task

    async def update_status(self, task_id: str, status: str) -> Task:
        task = await self.get(task_id)
        task.status = status
        return await self.save(task)

    async def bulk_transition(
        self, task_ids: Sequence[str], target: str = TaskStatus.COMPLETED.value
    ) -> list[Task]:
        """
        Move every listed task not already in ``target`` to ``target``.

        Returns the tasks that actually changed, in the order the caller
        listed them.
        """
        ids = list(dict.fromkeys(task_ids))
        if not ids:
            return []

        result = await self.session.execute(
            update(Task)
            .where(Task.id.in_(ids), Task.status != target)
            .values(status=target, updated_at=datetime.now(UTC))
            .returning(Task)
        )
        changed = {task.id: task for task in result.scalars().all()}

        self._invalidate(*ids)
        logger.info(
            "Bulk status transition",
            target=target,
            requested=len(ids),
            transitioned=len(changed),
        )

        return [changed[task_id] for task_id in ids if task_id in changed]

    async def find_overdue(self, now: datetime | None = None, limit: int = 1000) -> list[Task]:
        now = now or datetime.now(UTC)
        result = await self.session.execute(
            select(Task)
            .where(
                Task.due_date.is_not(None),
                Task.due_date < now,
                Task.status != TaskStatus.COMPLETED.value,
            )
            .order_by(Task.due_date, Task.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    def _invalidate(self, *task_ids: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(*task_ids)
