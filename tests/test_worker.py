import asyncio
import time
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from taskqueue.core.exceptions import TransientFailure
from taskqueue.core.registries import JobRegistry
from taskqueue.jobs.handlers import StatusUpdateHandler
from taskqueue.jobs.models import Job, JobState, JobType
from taskqueue.jobs.payloads import (
    OverdueNotificationPayload,
    StatusUpdatePayload,
)
from taskqueue.jobs.retry import RetryPolicy
from taskqueue.jobs.worker import TokenBucketLimiter, WorkerPool
from taskqueue.tasks.models import Task, TaskStatus


class FlakyHandler:
    """Fails transiently a fixed number of times, then succeeds."""

    payload_model = StatusUpdatePayload

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def handle(self, ctx, payload):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientFailure("database is locked")
        return {"calls": self.calls}


class SlowHandler:
    payload_model = StatusUpdatePayload

    def __init__(self, delay: float):
        self.delay = delay

    async def handle(self, ctx, payload):
        await asyncio.sleep(self.delay)
        return None


class CooperativeHandler:
    """Loops until cancelled, checking the signal at each step."""

    payload_model = StatusUpdatePayload

    def __init__(self):
        self.started = asyncio.Event()

    async def handle(self, ctx, payload):
        self.started.set()
        while True:
            ctx.raise_if_cancelled()
            await asyncio.sleep(0.01)


def override(registry: JobRegistry, handler) -> JobRegistry:
    registry.register(JobType.STATUS_UPDATE.value, handler)
    return registry


async def insert_raw_job(database, job_type: str, payload: dict) -> Job:
    job = Job(type=job_type, payload=payload)
    async with database.SessionLocal() as session:
        async with session.begin():
            session.add(job)
    return job


@pytest.mark.asyncio
async def test_status_update_job_completes(pool, store, gateway, observer, add_tasks):
    await add_tasks(Task(id="T1", title="Write report"))
    job_id = await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE"))

    assert await pool.run_until_idle() == 1

    job = await store.get(job_id)
    assert job.state == JobState.COMPLETED.value
    assert job.result == {"taskId": "T1", "newStatus": "DONE"}
    assert (await gateway.get_task("T1"))["status"] == "DONE"
    assert observer.completed == [job_id]


@pytest.mark.asyncio
async def test_invalid_payload_fails_without_retry(pool, store, database, observer):
    """A status update missing its status fails at once with attempt 0."""
    job = await insert_raw_job(database, JobType.STATUS_UPDATE.value, {"taskId": "T1"})

    await pool.run_until_idle()

    stored = await store.get(job.id)
    assert stored.state == JobState.FAILED.value
    assert stored.attempt == 0
    assert "status" in stored.last_error
    assert [job_id for job_id, _ in observer.failed] == [job.id]


@pytest.mark.asyncio
async def test_unknown_job_type_fails_and_notifies(pool, store, database, observer):
    job = await insert_raw_job(database, "reindex-search", {})

    await pool.run_until_idle()

    stored = await store.get(job.id)
    assert stored.state == JobState.FAILED.value
    assert stored.last_error == "Unknown job type: reindex-search"
    assert observer.failed == [(job.id, "Unknown job type: reindex-search")]


@pytest.mark.asyncio
async def test_overdue_job_with_partial_failures_completes(pool, store, notifier):
    notifier.failing = {"B"}
    job_id = await store.enqueue(
        OverdueNotificationPayload(overdue_task_ids=["A", "B", "C"])
    )

    await pool.run_until_idle()

    job = await store.get(job_id)
    assert job.state == JobState.COMPLETED.value
    assert job.result["processedCount"] == 2
    assert job.result["failedTaskIds"] == ["B"]


@pytest.mark.asyncio
async def test_transient_failure_retries_then_succeeds(pool, store, registry):
    handler = FlakyHandler(failures=2)
    override(registry, handler)
    job_id = await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE"))

    assert await pool.run_until_idle() == 3

    job = await store.get(job_id)
    assert job.state == JobState.COMPLETED.value
    assert job.attempt == 2
    assert job.result == {"calls": 3}


@pytest.mark.asyncio
async def test_transient_failure_exhausts_attempts(pool, store, registry, observer):
    handler = FlakyHandler(failures=10)
    override(registry, handler)
    job_id = await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE"))

    await pool.run_until_idle()

    job = await store.get(job_id)
    assert handler.calls == 3
    assert job.state == JobState.FAILED.value
    assert job.attempt == job.max_attempts == 3
    assert job.last_error == "database is locked"
    assert observer.failed == [(job_id, "database is locked")]


@pytest.mark.asyncio
async def test_retry_uses_backoff_delay(pool, store, registry):
    override(registry, FlakyHandler(failures=1))
    pool.retry_policy = RetryPolicy(base_delay_s=3600, max_delay_s=3600)
    job_id = await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE"))

    # First attempt fails; the retry is hidden for an hour
    assert await pool.run_until_idle() == 1

    job = await store.get(job_id)
    assert job.state == JobState.PENDING.value
    assert job.attempt == 1


@pytest.mark.asyncio
async def test_timeout_counts_as_transient(pool, store, registry, test_settings):
    test_settings.job_timeout_s = 0.05
    override(registry, SlowHandler(delay=1))
    job_id = await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE"))

    job = await store.dequeue("worker-a")
    assert await pool.process(job) == JobState.PENDING

    stored = await store.get(job_id)
    assert stored.attempt == 1
    assert "timeout" in stored.last_error


@pytest.mark.asyncio
async def test_unexpected_exception_is_retried(pool, store, registry):
    handler = StatusUpdateHandler()
    override(registry, handler)
    job_id = await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE"))

    with patch.object(handler, "handle", AsyncMock(side_effect=OSError("disk full"))):
        job = await store.dequeue("worker-a")
        assert await pool.process(job) == JobState.PENDING

    stored = await store.get(job_id)
    assert stored.last_error == "disk full"


@pytest.mark.asyncio
async def test_cancel_running_job(pool, store, registry, observer):
    handler = CooperativeHandler()
    override(registry, handler)
    job_id = await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE"))

    job = await store.dequeue("worker-a")
    processing = asyncio.create_task(pool.process(job))
    await asyncio.wait_for(handler.started.wait(), timeout=2)

    assert pool.cancel(job_id) is True
    assert await processing == JobState.FAILED

    stored = await store.get(job_id)
    assert stored.last_error == "cancelled"
    assert stored.attempt == 0
    assert observer.failed == [(job_id, "cancelled")]


@pytest.mark.asyncio
async def test_cancel_unknown_job_returns_false(pool):
    assert pool.cancel(uuid4()) is False


@pytest.mark.asyncio
async def test_pool_start_processes_jobs_and_stops(pool, store, add_tasks, wait_until):
    await add_tasks(Task(id="T1", title="One"), Task(id="T2", title="Two"))
    job_ids = [
        await store.enqueue(StatusUpdatePayload(task_id="T1", status="DONE")),
        await store.enqueue(
            StatusUpdatePayload(task_id="T2", status=TaskStatus.COMPLETED.value)
        ),
    ]

    await pool.start()
    try:
        assert pool.running
        with pytest.raises(RuntimeError, match="already running"):
            await pool.start()

        async def all_completed():
            jobs = [await store.get(job_id) for job_id in job_ids]
            return all(job.state == JobState.COMPLETED.value for job in jobs)

        await wait_until(all_completed)
    finally:
        await pool.stop(timeout=5)

    assert not pool.running
    assert pool.active_jobs == set()


@pytest.mark.asyncio
async def test_stop_is_idempotent(pool):
    await pool.stop()
    await pool.start()
    await pool.stop(timeout=5)
    await pool.stop(timeout=5)
    assert not pool.running


@pytest.mark.asyncio
async def test_token_bucket_limits_rate():
    limiter = TokenBucketLimiter(rate=20, capacity=1)

    started = time.monotonic()
    for _ in range(5):
        await limiter.acquire()
    elapsed = time.monotonic() - started

    # One token up front, then four refills at 20/s
    assert elapsed >= 0.15


@pytest.mark.asyncio
async def test_token_bucket_unlimited():
    limiter = TokenBucketLimiter(rate=0)

    started = time.monotonic()
    for _ in range(1000):
        await limiter.acquire()

    assert time.monotonic() - started < 1


def test_pool_ids_are_unique(test_settings, store, gateway):
    first = WorkerPool(test_settings, store, gateway)
    second = WorkerPool(test_settings, store, gateway)
    assert first.pool_id != second.pool_id
