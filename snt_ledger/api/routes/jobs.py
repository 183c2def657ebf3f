"""Job API routes: enqueue, inspect, list and retry office jobs."""

import logging

from fastapi import APIRouter, Depends, Query, status

from snt_ledger.api.deps import get_runner, require_staff
from snt_ledger.api.schemas import JobCreateRequest, JobResponse
from snt_ledger.jobs.runner import JobRunner
from snt_ledger.models import JobStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
def create_job(
    body: JobCreateRequest,
    runner: JobRunner = Depends(get_runner),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> JobResponse:
    """
    Queue a job for the worker.

    Returns:
        202: Queued job
        400: Unknown job type or invalid payload (nothing is stored)
        403: Missing staff role
    """
    job_id = runner.enqueue(body.type, body.payload, actor_id=actor_id, max_attempts=body.max_attempts)
    return JobResponse.model_validate(runner.get(job_id))


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: int, runner: JobRunner = Depends(get_runner)) -> JobResponse:  # noqa: B008
    return JobResponse.model_validate(runner.get(job_id))


@router.post("/{job_id}/retry", response_model=JobResponse)
def retry_job(
    job_id: int,
    runner: JobRunner = Depends(get_runner),  # noqa: B008
    actor_id: str = Depends(require_staff),  # noqa: B008
) -> JobResponse:
    job = runner.retry(job_id)
    logger.info("Job %d retry requested by %s", job_id, actor_id)
    return JobResponse.model_validate(job)


@router.get("", response_model=list[JobResponse])
def list_jobs(
    status_filter: JobStatus | None = Query(None, alias="status"),  # noqa: B008
    limit: int = Query(100, ge=1, le=500),  # noqa: B008
    runner: JobRunner = Depends(get_runner),  # noqa: B008
) -> list[JobResponse]:
    return [JobResponse.model_validate(job) for job in runner.list_jobs(status_filter, limit)]


__all__ = ["router"]
