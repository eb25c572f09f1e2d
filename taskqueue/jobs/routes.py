"""
Job administration API endpoints.

Read-only monitoring plus the two operator actions: retrying a failed job
and requesting cooperative cancellation of a running one.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from taskqueue.config.logging import get_logger
from taskqueue.core.exceptions import ConflictError, create_success_response
from taskqueue.infra.database import get_app_database
from taskqueue.jobs.models import JobState
from taskqueue.jobs.schemas import (
    JobActionResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
)
from taskqueue.jobs.store import JobNotFoundError, JobStore
from taskqueue.jobs.worker import WorkerPool

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_store(request: Request) -> JobStore:
    database = get_app_database(request.app)
    return JobStore(database.SessionLocal, request.app.state.settings)


def get_worker_pool(request: Request) -> WorkerPool | None:
    return getattr(request.app.state, "worker_pool", None)


@router.get("", response_model=dict)
async def list_jobs(
    state: list[JobState] | None = Query(default=None, description="Filter by state"),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    store: JobStore = Depends(get_job_store),
) -> dict[str, Any]:
    """List jobs, newest first."""
    jobs, total = await store.list_jobs(
        state=state, job_type=type, limit=limit, offset=offset
    )

    response = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def job_stats(store: JobStore = Depends(get_job_store)) -> dict[str, Any]:
    """Queue depth and counts by state and type."""
    stats = JobStatsResponse(**await store.stats())
    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID, store: JobStore = Depends(get_job_store)
) -> dict[str, Any]:
    job = await store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID, store: JobStore = Depends(get_job_store)
) -> dict[str, Any]:
    """Put a failed job back in the queue with a fresh attempt budget."""
    job = await store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    if not await store.retry_failed(job_id):
        raise ConflictError(
            "Only failed jobs can be retried",
            {"job_id": str(job_id), "state": job.state},
        )

    logger.info("Job retried via API", job_id=str(job_id))
    response = JobActionResponse(
        job_id=job_id, accepted=True, state=JobState.PENDING.value
    )
    return create_success_response(data=response.model_dump(mode="json"))


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: UUID,
    store: JobStore = Depends(get_job_store),
    pool: WorkerPool | None = Depends(get_worker_pool),
) -> dict[str, Any]:
    """Request cooperative cancellation of a job running in this process."""
    job = await store.get(job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    if job.state != JobState.ACTIVE.value or pool is None or not pool.cancel(job_id):
        raise ConflictError(
            "Job is not running in this process",
            {"job_id": str(job_id), "state": job.state},
        )

    response = JobActionResponse(job_id=job_id, accepted=True, state=job.state)
    return create_success_response(data=response.model_dump(mode="json"))
