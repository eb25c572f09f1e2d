"""
Relational job store with exclusive claims and visibility delays.
"""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, case, delete, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from taskqueue.config.logging import get_logger
from taskqueue.config.settings import Settings
from taskqueue.core.exceptions import NotFoundError
from taskqueue.jobs.models import Job, JobState
from taskqueue.jobs.payloads import JobPayload, dump_payload, job_type_for

logger = get_logger(__name__)

_TIMESTAMP = Job.__table__.c.finished_at.type


class JobNotFoundError(NotFoundError):
    """Raised when a job id does not resolve to a row."""

    def __init__(self, job_id: UUID):
        super().__init__(f"Job with ID {job_id} not found", {"job_id": str(job_id)})


class JobStore:
    """
    Durable FIFO queue of jobs.

    Claims are made with a single conditional UPDATE, so two concurrent
    ``dequeue`` calls can never return the same job. ``ack``, ``nack`` and
    ``fail`` only touch jobs that are still active.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: Settings):
        self.session_factory = session_factory
        self.settings = settings

    def build_job(
        self,
        payload: JobPayload,
        max_attempts: int | None = None,
        delay_s: float = 0.0,
    ) -> Job:
        if max_attempts is None:
            max_attempts = self.settings.job_max_attempts
        elif max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {max_attempts}")

        now = datetime.now(UTC)
        return Job(
            id=uuid.uuid4(),
            type=job_type_for(payload).value,
            payload=dump_payload(payload),
            state=JobState.PENDING.value,
            attempt=0,
            max_attempts=max_attempts,
            enqueued_at=now,
            visible_at=now + timedelta(seconds=delay_s),
            updated_at=now,
        )

    async def enqueue(
        self,
        payload: JobPayload,
        session: AsyncSession | None = None,
        max_attempts: int | None = None,
        delay_s: float = 0.0,
    ) -> UUID:
        """
        Persist a new pending job.

        With ``session`` the job joins the caller's transaction and becomes
        visible only when that transaction commits. Without it the job is
        committed on its own.
        """
        job = self.build_job(payload, max_attempts=max_attempts, delay_s=delay_s)
        await self._insert([job], session)

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            job_type=job.type,
            transactional=session is not None,
        )
        return job.id

    async def enqueue_bulk(
        self,
        payloads: Sequence[JobPayload],
        session: AsyncSession | None = None,
        max_attempts: int | None = None,
    ) -> list[UUID]:
        """Insert several jobs atomically: all become visible or none do."""
        jobs = [self.build_job(p, max_attempts=max_attempts) for p in payloads]
        if not jobs:
            return []

        await self._insert(jobs, session)

        logger.info(
            "Jobs enqueued in bulk",
            job_count=len(jobs),
            job_types=sorted({job.type for job in jobs}),
            transactional=session is not None,
        )
        return [job.id for job in jobs]

    async def _insert(self, jobs: list[Job], session: AsyncSession | None) -> None:
        if session is not None:
            session.add_all(jobs)
            await session.flush()
            return

        async with self.session_factory() as own_session:
            async with own_session.begin():
                own_session.add_all(jobs)

    async def dequeue(self, worker_id: str) -> Job | None:
        """
        Claim the oldest visible pending job for ``worker_id``.

        Returns None when nothing is claimable right now.
        """
        now = datetime.now(UTC)
        candidate = aliased(Job, name="candidate")

        next_job_id = (
            select(candidate.id)
            .where(
                candidate.state == JobState.PENDING.value,
                candidate.visible_at <= now,
            )
            .order_by(candidate.visible_at, candidate.enqueued_at)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        claim = (
            update(Job)
            .where(Job.id == next_job_id, Job.state == JobState.PENDING.value)
            .values(
                state=JobState.ACTIVE.value,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
            .returning(Job)
        )

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(claim)
                job = result.scalar_one_or_none()

        if job is not None:
            logger.debug(
                "Claimed job",
                job_id=str(job.id),
                job_type=job.type,
                worker_id=worker_id,
                attempt=job.attempt,
            )
        return job

    async def ack(
        self, job_id: UUID, worker_id: str, result: dict[str, Any] | None = None
    ) -> bool:
        """Mark a job completed if ``worker_id`` still holds its claim."""
        now = datetime.now(UTC)
        updated = await self._update_active(
            job_id,
            worker_id,
            state=JobState.COMPLETED.value,
            result=result,
            finished_at=now,
            locked_by=None,
            locked_at=None,
            updated_at=now,
        )
        if not updated:
            logger.warning(
                "Ack ignored for job not held by worker",
                job_id=str(job_id),
                worker_id=worker_id,
            )
        return updated

    async def nack(
        self, job_id: UUID, worker_id: str, error: str, next_delay: float
    ) -> JobState | None:
        """
        Record a failed attempt.

        The job returns to pending, hidden for ``next_delay`` seconds, unless
        this was its last attempt, in which case it becomes failed. Returns
        the resulting state, or None when the job was not active or was
        claimed by another worker since ``worker_id`` took it.
        """
        now = datetime.now(UTC)
        exhausted = Job.attempt + 1 >= Job.max_attempts

        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.state == JobState.ACTIVE.value,
                Job.locked_by == worker_id,
            )
            .values(
                attempt=Job.attempt + 1,
                state=case(
                    (exhausted, JobState.FAILED.value),
                    else_=JobState.PENDING.value,
                ),
                finished_at=case((exhausted, literal(now, _TIMESTAMP)), else_=None),
                visible_at=now + timedelta(seconds=max(0.0, next_delay)),
                last_error=error,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            .returning(Job.state, Job.attempt)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            async with session.begin():
                row = (await session.execute(stmt)).one_or_none()

        if row is None:
            logger.warning(
                "Nack ignored for job not held by worker",
                job_id=str(job_id),
                worker_id=worker_id,
            )
            return None

        state = JobState(row.state)
        logger.info(
            "Job attempt failed",
            job_id=str(job_id),
            attempt=row.attempt,
            next_state=state.value,
            next_delay_s=next_delay if state == JobState.PENDING else None,
        )
        return state

    async def fail(self, job_id: UUID, worker_id: str, error: str) -> bool:
        """Move a held job straight to failed without consuming a retry."""
        now = datetime.now(UTC)
        updated = await self._update_active(
            job_id,
            worker_id,
            state=JobState.FAILED.value,
            last_error=error,
            finished_at=now,
            locked_by=None,
            locked_at=None,
            updated_at=now,
        )
        if not updated:
            logger.warning(
                "Fail ignored for job not held by worker",
                job_id=str(job_id),
                worker_id=worker_id,
            )
        return updated

    async def _update_active(self, job_id: UUID, worker_id: str, **values: Any) -> bool:
        # A recovered and reclaimed job belongs to its new worker
        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.state == JobState.ACTIVE.value,
                Job.locked_by == worker_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
        return result.rowcount > 0

    async def recover_stale(self, visibility_timeout_s: float) -> list[tuple[UUID, JobState]]:
        """
        Release active jobs whose executor has held them too long.

        Each recovered job is charged one attempt, exactly like a nack with
        no delay. Returns ``(job_id, new_state)`` pairs.
        """
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=visibility_timeout_s)
        exhausted = Job.attempt + 1 >= Job.max_attempts

        stmt = (
            update(Job)
            .where(Job.state == JobState.ACTIVE.value, Job.locked_at < cutoff)
            .values(
                attempt=Job.attempt + 1,
                state=case(
                    (exhausted, JobState.FAILED.value),
                    else_=JobState.PENDING.value,
                ),
                finished_at=case((exhausted, literal(now, _TIMESTAMP)), else_=None),
                visible_at=now,
                last_error=f"Job timeout after {visibility_timeout_s}s",
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            .returning(Job.id, Job.state)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session:
            async with session.begin():
                rows = (await session.execute(stmt)).all()

        recovered = [(row.id, JobState(row.state)) for row in rows]
        if recovered:
            logger.warning(
                "Recovered stale jobs",
                stale_job_count=len(recovered),
                timeout_seconds=visibility_timeout_s,
            )
        return recovered

    async def sweep(self, now: datetime | None = None) -> int:
        """
        Delete finished jobs past their retention window.

        Completed jobs are kept for ``job_completed_retention_s`` and capped
        at ``job_completed_retention_count``; failed jobs are kept for
        ``job_failed_retention_s``.
        """
        now = now or datetime.now(UTC)
        completed_cutoff = now - timedelta(seconds=self.settings.job_completed_retention_s)
        failed_cutoff = now - timedelta(seconds=self.settings.job_failed_retention_s)

        kept = aliased(Job, name="kept")
        overflow_ids = (
            select(kept.id)
            .where(kept.state == JobState.COMPLETED.value)
            .order_by(kept.finished_at.desc(), kept.enqueued_at.desc())
            .offset(self.settings.job_completed_retention_count)
        )

        statements = [
            delete(Job).where(
                Job.state == JobState.COMPLETED.value,
                Job.finished_at < completed_cutoff,
            ),
            delete(Job).where(Job.id.in_(overflow_ids)),
            delete(Job).where(
                Job.state == JobState.FAILED.value,
                Job.finished_at < failed_cutoff,
            ),
        ]

        deleted_count = 0
        async with self.session_factory() as session:
            async with session.begin():
                for stmt in statements:
                    result = await session.execute(
                        stmt.execution_options(synchronize_session=False)
                    )
                    deleted_count += result.rowcount

        if deleted_count > 0:
            logger.info("Swept finished jobs", deleted_count=deleted_count)

        return deleted_count

    # Admin reads and operator actions

    async def get(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def list_jobs(
        self,
        state: Sequence[JobState] | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        query = select(Job)
        if state:
            query = query.where(Job.state.in_([s.value for s in state]))
        if job_type:
            query = query.where(Job.type == job_type)

        async with self.session_factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(query.subquery()))
            ).scalar() or 0
            result = await session.execute(
                query.order_by(Job.enqueued_at.desc()).offset(offset).limit(limit)
            )
            return list(result.scalars().all()), total

    async def stats(self) -> dict[str, Any]:
        async with self.session_factory() as session:
            by_state = dict(
                (
                    await session.execute(
                        select(Job.state, func.count(Job.id)).group_by(Job.state)
                    )
                ).all()
            )
            by_type = dict(
                (
                    await session.execute(
                        select(Job.type, func.count(Job.id)).group_by(Job.type)
                    )
                ).all()
            )
            retry_scheduled = (
                await session.execute(
                    select(func.count(Job.id)).where(
                        and_(Job.state == JobState.PENDING.value, Job.attempt > 0)
                    )
                )
            ).scalar() or 0

        return {
            "total_jobs": sum(by_state.values()),
            "by_state": by_state,
            "by_type": by_type,
            "queue_depth": by_state.get(JobState.PENDING.value, 0)
            + by_state.get(JobState.ACTIVE.value, 0),
            "retry_scheduled": retry_scheduled,
        }

    async def retry_failed(self, job_id: UUID) -> bool:
        """Operator action: put a failed job back in the queue with a fresh budget."""
        now = datetime.now(UTC)
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.state == JobState.FAILED.value)
            .values(
                state=JobState.PENDING.value,
                attempt=0,
                visible_at=now,
                finished_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)

        success = result.rowcount > 0
        if success:
            logger.info("Job retried", job_id=str(job_id))
        return success
