"""
Asyncio worker pool draining the job store.
"""

import asyncio
import os
import socket
import time
from uuid import UUID

from taskqueue.config.logging import get_logger
from taskqueue.config.settings import Settings
from taskqueue.core.exceptions import JobFailure
from taskqueue.core.registries import JobRegistry, job_registry
from taskqueue.infra.database import Database
from taskqueue.jobs.gateway import EnqueueGateway
from taskqueue.jobs.handlers import JobContext
from taskqueue.jobs.hooks import JobObserver, LoggingJobObserver
from taskqueue.jobs.models import Job, JobState
from taskqueue.jobs.payloads import parse_payload
from taskqueue.jobs.registry_init import register_job_handlers
from taskqueue.jobs.retry import RetryPolicy
from taskqueue.jobs.store import JobStore
from taskqueue.tasks.cache import TaskCache
from taskqueue.tasks.notifications import LoggingNotificationSender, NotificationSender
from taskqueue.tasks.scheduler import OverdueScanner

logger = get_logger(__name__)


class TokenBucketLimiter:
    """Process-wide token bucket: ``rate`` acquisitions per second on average."""

    def __init__(self, rate: float, capacity: float | None = None):
        self.rate = rate
        self.capacity = capacity if capacity is not None else max(1.0, rate)
        self._tokens = self.capacity
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(
            self.capacity, self._tokens + (now - self._last_refill) * self.rate
        )
        self._last_refill = now

    async def acquire(self) -> None:
        if self.rate <= 0:
            return

        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait_s = (1 - self._tokens) / self.rate
            await asyncio.sleep(wait_s)


class WorkerPool:
    """
    Fixed-size pool of executors sharing one job store.

    Features:
    - N executors, each running exactly one job at a time
    - Global dequeue rate limit shared by all executors
    - Per-job execution timeout and capped exponential retry backoff
    - Cooperative cancellation of in-flight jobs
    - Periodic retention sweep and stale job recovery
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        gateway: EnqueueGateway,
        registry: JobRegistry = job_registry,
        notifier: NotificationSender | None = None,
        retry_policy: RetryPolicy | None = None,
        observer: JobObserver | None = None,
        limiter: TokenBucketLimiter | None = None,
        overdue_scanner: OverdueScanner | None = None,
    ):
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.registry = registry
        self.notifier = notifier or LoggingNotificationSender()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.observer = observer or LoggingJobObserver()
        self.limiter = limiter or TokenBucketLimiter(settings.job_rate_limit_per_s)
        self.overdue_scanner = overdue_scanner

        self.pool_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.active_jobs: set[UUID] = set()
        self._cancel_events: dict[UUID, asyncio.Event] = {}
        self._executors: list[asyncio.Task] = []
        self._background: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Spawn executors and housekeeping loops; returns immediately."""
        if self.running:
            raise RuntimeError("Worker pool is already running")

        self.running = True
        self._stop_event.clear()

        logger.info(
            "Starting worker pool",
            pool_id=self.pool_id,
            concurrency=self.settings.job_concurrency,
            rate_limit_per_s=self.settings.job_rate_limit_per_s,
        )

        self._executors = [
            asyncio.create_task(
                self._executor_loop(f"{self.pool_id}-{index}"),
                name=f"job-executor-{index}",
            )
            for index in range(self.settings.job_concurrency)
        ]
        self._background = [
            asyncio.create_task(self._sweep_loop(), name="job-sweep"),
            asyncio.create_task(self._recovery_loop(), name="job-recovery"),
        ]
        if self.overdue_scanner is not None and self.settings.overdue_scan_enabled:
            self._background.append(
                asyncio.create_task(self._overdue_loop(), name="overdue-scan")
            )

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop taking new jobs and wait for in-flight ones to finish."""
        if not self.running:
            return

        logger.info("Stopping worker pool", pool_id=self.pool_id)
        self.running = False
        self._stop_event.set()

        tasks = self._executors + self._background
        _, pending = await asyncio.wait(tasks, timeout=timeout)

        if pending:
            # Jobs interrupted here stay active until stale recovery releases them
            logger.warning(
                "Worker pool stopped with active jobs",
                pool_id=self.pool_id,
                active_jobs=len(self.active_jobs),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self._executors = []
        self._background = []

    def cancel(self, job_id: UUID) -> bool:
        """Ask an in-flight job to stop at its next safe point."""
        event = self._cancel_events.get(job_id)
        if event is None:
            return False
        event.set()
        logger.info("Job cancellation requested", job_id=str(job_id))
        return True

    async def run_until_idle(self, worker_id: str | None = None) -> int:
        """Process jobs until none is claimable; returns how many ran."""
        worker_id = worker_id or f"{self.pool_id}-drain"
        processed = 0
        while True:
            await self.limiter.acquire()
            job = await self.store.dequeue(worker_id)
            if job is None:
                return processed
            await self.process(job)
            processed += 1

    async def _sleep(self, seconds: float) -> None:
        """Sleep that ends early when the pool is stopping."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _executor_loop(self, worker_id: str) -> None:
        while self.running:
            try:
                await self.limiter.acquire()
                job = await self.store.dequeue(worker_id)

                if job is None:
                    await self._sleep(self.settings.job_poll_interval_ms / 1000)
                    continue

                await self.process(job)

            except Exception:
                logger.exception("Error in executor loop", worker_id=worker_id)
                await self._sleep(5)

    async def process(self, job: Job) -> JobState | None:
        """
        Run one claimed job and record its outcome in the store.

        Returns the job's new state, or None when the claim was lost to
        stale recovery and another worker now holds the job.
        """
        job_logger = logger.bind(
            job_id=str(job.id), job_type=job.type, attempt=job.attempt
        )
        cancel_event = asyncio.Event()
        self._cancel_events[job.id] = cancel_event
        self.active_jobs.add(job.id)
        started = time.monotonic()

        try:
            job_type = job.job_type()
            if job_type is None or job_type.value not in self.registry.list():
                # Version skew between producer and worker; retrying cannot help
                job_logger.error("Unknown job type")
                return await self._fail_final(job, f"Unknown job type: {job.type}")

            handler = self.registry.get(job_type.value)
            ctx = JobContext(
                job_id=job.id,
                job_type=job_type,
                attempt=job.attempt,
                gateway=self.gateway,
                notifier=self.notifier,
                cancel_event=cancel_event,
            )

            job_logger.debug("Processing job started")
            try:
                payload = parse_payload(job_type, job.payload)
                result = await asyncio.wait_for(
                    handler.handle(ctx, payload), timeout=self.settings.job_timeout_s
                )
            except JobFailure as failure:
                if failure.retryable:
                    job_logger.warning("Job attempt failed", error=failure.message)
                    return await self._retry(job, failure.message)
                job_logger.error("Job failed without retry", error=failure.message)
                return await self._fail_final(job, failure.message)
            except asyncio.TimeoutError:
                error = f"Job exceeded {self.settings.job_timeout_s}s timeout"
                job_logger.warning("Job attempt timed out")
                return await self._retry(job, error)
            except Exception as e:
                job_logger.exception("Job processing failed", error=str(e))
                return await self._retry(job, str(e) or e.__class__.__name__)

            if not await self.store.ack(job.id, job.locked_by, result):
                return None
            self.observer.on_job_completed(job.id)
            job_logger.debug("Processing job completed successfully")
            return JobState.COMPLETED

        finally:
            self.active_jobs.discard(job.id)
            self._cancel_events.pop(job.id, None)
            job_logger.debug(
                "Job finished", duration_ms=round((time.monotonic() - started) * 1000)
            )

    async def _retry(self, job: Job, error: str) -> JobState | None:
        delay = self.retry_policy.delay(job.attempt)
        state = await self.store.nack(job.id, job.locked_by, error, delay)

        if state == JobState.FAILED:
            logger.error(
                "Job failed after maximum retries",
                job_id=str(job.id),
                attempts=job.attempt + 1,
                error=error,
            )
            self.observer.on_job_failed_final(job.id, error)
        elif state == JobState.PENDING:
            logger.info(
                "Job scheduled for retry", job_id=str(job.id), delay_s=delay
            )
        return state

    async def _fail_final(self, job: Job, error: str) -> JobState | None:
        if not await self.store.fail(job.id, job.locked_by, error):
            return None
        self.observer.on_job_failed_final(job.id, error)
        return JobState.FAILED

    async def _sweep_loop(self) -> None:
        while self.running:
            try:
                await self.store.sweep()
            except Exception:
                logger.exception("Error in retention sweep")
            await self._sleep(self.settings.job_sweep_interval_s)

    async def _recovery_loop(self) -> None:
        while self.running:
            try:
                recovered = await self.store.recover_stale(
                    self.settings.job_visibility_timeout_s
                )
                for job_id, state in recovered:
                    if state == JobState.FAILED:
                        self.observer.on_job_failed_final(
                            job_id, "Retries exhausted after visibility timeout"
                        )
            except Exception:
                logger.exception("Error in stale job recovery")
            await self._sleep(self.settings.job_visibility_timeout_s / 2)

    async def _overdue_loop(self) -> None:
        while self.running:
            try:
                await self.overdue_scanner.scan()
            except Exception:
                logger.exception("Error in overdue scan")
            await self._sleep(self.settings.overdue_scan_interval_s)


def build_worker_pool(
    settings: Settings,
    database: Database,
    notifier: NotificationSender | None = None,
    observer: JobObserver | None = None,
    registry: JobRegistry = job_registry,
) -> WorkerPool:
    """Wire the store, gateway, cache and scanner into a pool."""
    register_job_handlers(registry)
    store = JobStore(database.SessionLocal, settings)
    cache = TaskCache(
        maxsize=settings.task_cache_maxsize, ttl=settings.task_cache_ttl_s
    )
    gateway = EnqueueGateway(database.SessionLocal, store, cache)

    return WorkerPool(
        settings=settings,
        store=store,
        gateway=gateway,
        registry=registry,
        notifier=notifier,
        observer=observer,
        overdue_scanner=OverdueScanner(gateway),
    )
