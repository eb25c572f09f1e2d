from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from taskqueue.core.exceptions import NotFoundError
from taskqueue.jobs.models import JobType
from taskqueue.tasks.models import Task, TaskStatus
from taskqueue.tasks.repository import TaskNotFound


async def job_count(store) -> int:
    _, total = await store.list_jobs()
    return total


@pytest.mark.asyncio
async def test_create_task_enqueues_status_job(gateway, store):
    task = await gateway.create_task(id="T1", title="Write report")

    jobs, total = await store.list_jobs()
    assert total == 1
    assert jobs[0].type == JobType.STATUS_UPDATE.value
    assert jobs[0].payload == {"taskId": "T1", "status": TaskStatus.PENDING.value}
    assert task.id == "T1"


@pytest.mark.asyncio
async def test_failed_task_write_leaves_no_job(gateway, store, add_tasks):
    """A task insert that violates a constraint must not leave an orphan job."""
    await add_tasks(Task(id="T1", title="Existing"))

    with pytest.raises(IntegrityError):
        await gateway.create_task(id="T1", title="Duplicate")

    assert await job_count(store) == 0


@pytest.mark.asyncio
async def test_failed_enqueue_rolls_back_task_write(gateway, store):
    """A failing job insert rolls back the task write in the same transaction."""
    with patch.object(store, "enqueue", side_effect=RuntimeError("job table offline")):
        with pytest.raises(RuntimeError, match="job table offline"):
            await gateway.create_task(id="T1", title="Write report")

    assert await gateway.get_task("T1") is None
    assert await job_count(store) == 0


@pytest.mark.asyncio
async def test_update_task_status_enqueues_on_change(gateway, store, add_tasks):
    await add_tasks(Task(id="T1", title="Write report"))

    task = await gateway.update_task_status("T1", TaskStatus.IN_PROGRESS.value)

    assert task.status == TaskStatus.IN_PROGRESS.value
    jobs, total = await store.list_jobs()
    assert total == 1
    assert jobs[0].payload == {"taskId": "T1", "status": "IN_PROGRESS"}


@pytest.mark.asyncio
async def test_update_task_status_without_change_enqueues_nothing(gateway, store, add_tasks):
    await add_tasks(Task(id="T1", title="Write report"))

    await gateway.update_task_status("T1", TaskStatus.PENDING.value)

    assert await job_count(store) == 0


@pytest.mark.asyncio
async def test_update_missing_task_raises(gateway, store):
    with pytest.raises(TaskNotFound):
        await gateway.update_task_status("missing", TaskStatus.COMPLETED.value)

    assert await job_count(store) == 0


@pytest.mark.asyncio
async def test_bulk_complete_skips_already_completed(gateway, store, add_tasks):
    """X transitions, Y is already completed: exactly one follow-up job."""
    await add_tasks(
        Task(id="X", title="Open", status=TaskStatus.PENDING.value),
        Task(id="Y", title="Done", status=TaskStatus.COMPLETED.value),
    )

    job_ids = await gateway.enqueue_bulk_complete(["X", "Y"])

    assert len(job_ids) == 1
    job = await store.get(job_ids[0])
    assert job.type == JobType.STATUS_UPDATE.value
    assert job.payload == {"taskId": "X", "status": TaskStatus.COMPLETED.value}
    assert (await gateway.get_task("X"))["status"] == TaskStatus.COMPLETED.value
    assert await job_count(store) == 1


@pytest.mark.asyncio
async def test_bulk_complete_with_no_transition_raises(gateway, store, add_tasks):
    await add_tasks(Task(id="Y", title="Done", status=TaskStatus.COMPLETED.value))

    with pytest.raises(NotFoundError, match="Task not found"):
        await gateway.enqueue_bulk_complete(["Y", "missing"])

    assert await job_count(store) == 0


@pytest.mark.asyncio
async def test_bulk_complete_ignores_duplicate_ids(gateway, add_tasks):
    await add_tasks(Task(id="X", title="Open"))

    job_ids = await gateway.enqueue_bulk_complete(["X", "X"])

    assert len(job_ids) == 1


@pytest.mark.asyncio
async def test_enqueue_bulk_status_update_defers_work(gateway, store, add_tasks):
    await add_tasks(Task(id="X", title="Open"))

    job_id = await gateway.enqueue_bulk_status_update(["X"])

    job = await store.get(job_id)
    assert job.type == JobType.BULK_STATUS_UPDATE.value
    assert job.payload == {"taskIds": ["X"]}
    # Nothing has moved yet
    assert (await gateway.get_task("X"))["status"] == TaskStatus.PENDING.value


@pytest.mark.asyncio
async def test_enqueue_overdue_batch(gateway, store):
    job_id = await gateway.enqueue_overdue_batch(["A", "B"])

    job = await store.get(job_id)
    assert job.type == JobType.OVERDUE_NOTIFICATION.value
    assert job.payload == {"overdueTaskIds": ["A", "B"]}


@pytest.mark.asyncio
async def test_with_transaction_rolls_back_on_error(gateway, store, add_tasks):
    await add_tasks(Task(id="T1", title="Write report"))

    async def change_then_fail(uow):
        await uow.tasks.update_status("T1", TaskStatus.COMPLETED.value)
        await uow.enqueue_task_status_changed("T1", TaskStatus.COMPLETED.value)
        raise RuntimeError("downstream refused")

    with pytest.raises(RuntimeError, match="downstream refused"):
        await gateway.with_transaction(change_then_fail)

    assert (await gateway.get_task("T1"))["status"] == TaskStatus.PENDING.value
    assert await job_count(store) == 0


@pytest.mark.asyncio
async def test_task_cache_invalidated_after_commit(gateway, cache, add_tasks):
    await add_tasks(Task(id="T1", title="Write report"))

    assert (await gateway.get_task("T1"))["status"] == TaskStatus.PENDING.value
    assert len(cache) == 1

    await gateway.update_task_status("T1", TaskStatus.COMPLETED.value)

    assert cache.get("T1") is None
    assert (await gateway.get_task("T1"))["status"] == TaskStatus.COMPLETED.value
