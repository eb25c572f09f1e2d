import time
from datetime import UTC, datetime, timedelta

import pytest

from taskqueue.jobs.models import JobType
from taskqueue.tasks.cache import TaskCache
from taskqueue.tasks.models import Task, TaskStatus
from taskqueue.tasks.repository import TaskNotFound, TaskRepository
from taskqueue.tasks.scheduler import OverdueScanner


def test_cache_hit_and_miss_counters():
    cache = TaskCache(maxsize=8, ttl=60)

    assert cache.get("T1") is None
    cache.put("T1", {"id": "T1", "status": "PENDING"})
    assert cache.get("T1") == {"id": "T1", "status": "PENDING"}

    assert cache.hits == 1
    assert cache.misses == 1


def test_cache_returns_copies():
    cache = TaskCache()
    cache.put("T1", {"status": "PENDING"})

    snapshot = cache.get("T1")
    snapshot["status"] = "COMPLETED"

    assert cache.get("T1") == {"status": "PENDING"}


def test_cache_invalidate_and_clear():
    cache = TaskCache()
    cache.put("T1", {})
    cache.put("T2", {})
    cache.put("T3", {})

    cache.invalidate("T1", "T2", "missing")
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_cache_is_bounded():
    cache = TaskCache(maxsize=2, ttl=60)
    for task_id in ("T1", "T2", "T3"):
        cache.put(task_id, {"id": task_id})

    assert len(cache) == 2


def test_cache_entries_expire():
    cache = TaskCache(maxsize=8, ttl=0.05)
    cache.put("T1", {"id": "T1"})

    time.sleep(0.1)

    assert cache.get("T1") is None


@pytest.mark.asyncio
async def test_repository_get_missing_raises(database):
    async with database.SessionLocal() as session:
        with pytest.raises(TaskNotFound) as exc_info:
            await TaskRepository(session).get("missing")

    assert exc_info.value.status_code == 404
    assert exc_info.value.details == {"task_id": "missing"}


@pytest.mark.asyncio
async def test_repository_snapshot_uses_cache(database, add_tasks):
    await add_tasks(Task(id="T1", title="Write report"))
    cache = TaskCache()

    async with database.SessionLocal() as session:
        repo = TaskRepository(session, cache)
        first = await repo.snapshot("T1")
        second = await repo.snapshot("T1")

    assert first == second
    assert first["status"] == TaskStatus.PENDING.value
    assert cache.hits == 1


@pytest.mark.asyncio
async def test_find_overdue(database, add_tasks):
    now = datetime.now(UTC)
    await add_tasks(
        Task(id="late", title="Late", due_date=now - timedelta(days=2)),
        Task(id="later", title="Later", due_date=now - timedelta(days=1)),
        Task(
            id="done",
            title="Done",
            status=TaskStatus.COMPLETED.value,
            due_date=now - timedelta(days=3),
        ),
        Task(id="future", title="Future", due_date=now + timedelta(days=1)),
        Task(id="undated", title="No due date"),
    )

    async with database.SessionLocal() as session:
        overdue = await TaskRepository(session).find_overdue(now)

    assert [task.id for task in overdue] == ["late", "later"]


@pytest.mark.asyncio
async def test_overdue_scanner_enqueues_one_batch(gateway, store, add_tasks):
    now = datetime.now(UTC)
    await add_tasks(
        Task(id="A", title="A", due_date=now - timedelta(hours=2)),
        Task(id="B", title="B", due_date=now - timedelta(hours=1)),
    )

    job_id = await OverdueScanner(gateway).scan(now)

    job = await store.get(job_id)
    assert job.type == JobType.OVERDUE_NOTIFICATION.value
    assert job.payload == {"overdueTaskIds": ["A", "B"]}


@pytest.mark.asyncio
async def test_overdue_scanner_nothing_overdue(gateway, store):
    assert await OverdueScanner(gateway).scan() is None

    _, total = await store.list_jobs()
    assert total == 0
