import asyncio
from collections.abc import AsyncGenerator

import pytest

from taskqueue.config.settings import Settings
from taskqueue.core.registries import JobRegistry
from taskqueue.infra.database import Database
from taskqueue.jobs.gateway import EnqueueGateway
from taskqueue.jobs.registry_init import register_job_handlers
from taskqueue.jobs.retry import RetryPolicy
from taskqueue.jobs.store import JobStore
from taskqueue.jobs.worker import TokenBucketLimiter, WorkerPool
from taskqueue.tasks.cache import TaskCache
from taskqueue.tasks.models import Task

# Import models to ensure they're registered
from taskqueue.jobs import models as job_models  # noqa: F401
from taskqueue.tasks import models as task_models  # noqa: F401


class RecordingNotifier:
    """Notification sender that records calls and fails for chosen task ids."""

    def __init__(self, failing: set[str] | None = None, rejecting: set[str] | None = None):
        self.failing = failing or set()
        self.rejecting = rejecting or set()
        self.sent: list[str] = []

    async def notify(self, task_id: str) -> bool:
        if task_id in self.failing:
            raise ConnectionError(f"mail relay refused {task_id}")
        if task_id in self.rejecting:
            return False
        self.sent.append(task_id)
        return True


class RecordingObserver:
    def __init__(self):
        self.completed: list = []
        self.failed: list = []

    def on_job_completed(self, job_id) -> None:
        self.completed.append(job_id)

    def on_job_failed_final(self, job_id, error: str) -> None:
        self.failed.append((job_id, error))


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        environment="test",
        debug=False,
        log_level="WARNING",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        job_concurrency=2,
        job_rate_limit_per_s=0,
        job_poll_interval_ms=20,
        job_max_attempts=3,
        job_timeout_s=2.0,
        job_visibility_timeout_s=30,
    )


@pytest.fixture
async def database(test_settings) -> AsyncGenerator[Database, None]:
    db = Database(test_settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def store(database, test_settings) -> JobStore:
    return JobStore(database.SessionLocal, test_settings)


@pytest.fixture
def cache() -> TaskCache:
    return TaskCache(maxsize=128, ttl=60)


@pytest.fixture
def gateway(database, store, cache) -> EnqueueGateway:
    return EnqueueGateway(database.SessionLocal, store, cache)


@pytest.fixture
def registry() -> JobRegistry:
    return register_job_handlers(JobRegistry())


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def pool(test_settings, store, gateway, registry, notifier, observer) -> WorkerPool:
    return WorkerPool(
        settings=test_settings,
        store=store,
        gateway=gateway,
        registry=registry,
        notifier=notifier,
        retry_policy=RetryPolicy(base_delay_s=0),
        observer=observer,
        limiter=TokenBucketLimiter(rate=0),
    )


@pytest.fixture
def add_tasks(database):
    """Insert tasks directly, bypassing the gateway."""

    async def _add(*tasks: Task) -> list[Task]:
        async with database.SessionLocal() as session:
            async with session.begin():
                session.add_all(tasks)
        return list(tasks)

    return _add


@pytest.fixture
def wait_until():
    """Poll an async predicate until it returns truthy."""

    async def _wait(predicate, timeout: float = 5.0, interval: float = 0.02):
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            value = await predicate()
            if value:
                return value
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
