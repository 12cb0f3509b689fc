"""Job run monitoring API endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status

from jobscope.core.datetime_utils import get_cutoff, to_naive_utc
from jobscope.dependencies import DBSession
from jobscope.models.enums import JobStatus
from jobscope.schemas.job_run import (
    JobRunDetailResponse,
    JobRunFilter,
    JobRunResponse,
    JobStatsResponse,
    RetryChainResponse,
)
from jobscope.services import job_runs

router = APIRouter()


@router.get("/jobs/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    db: DBSession,
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    job_class: str | None = Query(default=None, description="Filter by job class"),
    queue: str | None = Query(default=None),
    tag: str | None = Query(default=None, description="Runs carrying this tag"),
    any_tags: list[str] = Query(default=[], description="Runs carrying at least one of these tags"),
    all_tags: list[str] = Query(default=[], description="Runs carrying all of these tags"),
    exclude_tag: str | None = Query(default=None),
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """
    List job execution history, newest first.

    All filters combine with AND.
    """
    filters = JobRunFilter(
        status=status_filter,
        job_class=job_class,
        queue=queue,
        tag=tag,
        any_tags=any_tags,
        all_tags=all_tags,
        exclude_tag=exclude_tag,
        since=to_naive_utc(since) if since else None,
        until=to_naive_utc(until) if until else None,
        limit=limit,
        offset=offset,
    )
    runs = await job_runs.list_job_runs(db, filters)
    return [JobRunResponse.model_validate(run) for run in runs]


@router.get("/jobs/runs/{run_pk}", response_model=JobRunDetailResponse)
async def get_job_run(run_pk: int, db: DBSession) -> JobRunDetailResponse:
    """Get one job run including stack trace and payload."""
    run = await job_runs.get_job_run(db, run_pk)
    if not run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job run not found",
        )
    return JobRunDetailResponse.model_validate(run)


@router.get("/jobs/runs/{run_pk}/retry-chain", response_model=RetryChainResponse)
async def get_retry_chain(run_pk: int, db: DBSession) -> RetryChainResponse:
    """Get the retry ancestors and descendants of a job run."""
    run = await job_runs.get_job_run(db, run_pk)
    if not run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job run not found",
        )

    ancestors = await job_runs.get_retry_ancestors(db, run)
    descendants = await job_runs.get_retry_descendants(db, run)
    return RetryChainResponse(
        run=JobRunResponse.model_validate(run),
        ancestors=[JobRunResponse.model_validate(r) for r in ancestors],
        descendants=[JobRunResponse.model_validate(r) for r in descendants],
    )


@router.get("/jobs/stats", response_model=JobStatsResponse)
async def get_job_stats(
    db: DBSession,
    hours: int = Query(default=24, ge=1, le=24 * 90),
) -> JobStatsResponse:
    """
    Get aggregated statistics for recent job runs.

    Returns status counts, success rate, durations and the top failing
    classes, exceptions and tags for the last `hours` hours.
    """
    return await job_runs.get_job_stats(db, since=get_cutoff(hours=hours))
