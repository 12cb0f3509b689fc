"""
Read-side queries over recorded job runs.

Listing with filters, retry chain walking, aggregate statistics and
retention pruning. Tag filters compare against the serialized JSON list so
they work on both PostgreSQL and SQLite.
"""

import json
from collections import Counter
from datetime import datetime

from sqlalchemy import String, cast, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobscope.core.datetime_utils import get_cutoff
from jobscope.core.logging import get_logger
from jobscope.models.enums import JobStatus
from jobscope.models.job_run import JobRun
from jobscope.schemas.job_run import (
    ClassCount,
    JobRunFilter,
    JobStatsResponse,
    SlowJob,
    TagStats,
)

logger = get_logger(__name__)

TOP_N = 10


def _has_tag(tag: str):
    """SQL predicate: the run's tag list contains `tag`."""
    return cast(JobRun.tags, String).contains(json.dumps(tag.strip().lower()), autoescape=True)


async def list_job_runs(db: AsyncSession, filters: JobRunFilter | None = None) -> list[JobRun]:
    """List job runs newest first."""
    filters = filters or JobRunFilter()
    query = select(JobRun).order_by(JobRun.id.desc())

    if filters.status:
        query = query.where(JobRun.status == filters.status)
    if filters.job_class:
        query = query.where(JobRun.job_class == filters.job_class)
    if filters.queue:
        query = query.where(JobRun.queue == filters.queue)
    if filters.since:
        query = query.where(JobRun.created_at >= filters.since)
    if filters.until:
        query = query.where(JobRun.created_at < filters.until)

    if filters.tag:
        query = query.where(_has_tag(filters.tag))
    if filters.any_tags:
        query = query.where(or_(*(_has_tag(t) for t in filters.any_tags)))
    for tag in filters.all_tags:
        query = query.where(_has_tag(tag))
    if filters.exclude_tag:
        query = query.where(or_(JobRun.tags.is_(None), ~_has_tag(filters.exclude_tag)))

    query = query.offset(filters.offset).limit(filters.limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_job_run(db: AsyncSession, run_pk: int) -> JobRun | None:
    return await db.get(JobRun, run_pk)


async def get_retry_ancestors(db: AsyncSession, run: JobRun) -> list[JobRun]:
    """Runs this one retried, nearest first, up to the root of the chain."""
    ancestors: list[JobRun] = []
    seen = {run.id}
    parent_id = run.retried_from_id

    while parent_id is not None and parent_id not in seen:
        parent = await db.get(JobRun, parent_id)
        if parent is None:
            break
        ancestors.append(parent)
        seen.add(parent.id)
        parent_id = parent.retried_from_id

    return ancestors


async def get_retry_descendants(db: AsyncSession, run: JobRun) -> list[JobRun]:
    """Every retry spawned from this run, breadth-first."""
    descendants: list[JobRun] = []
    seen = {run.id}
    frontier = [run.id]

    while frontier:
        result = await db.execute(
            select(JobRun)
            .where(JobRun.retried_from_id.in_(frontier))
            .order_by(JobRun.id)
        )
        children = [child for child in result.scalars().all() if child.id not in seen]
        descendants.extend(children)
        seen.update(child.id for child in children)
        frontier = [child.id for child in children]

    return descendants


async def get_retry_chain(db: AsyncSession, run: JobRun) -> list[JobRun]:
    """The whole chain ordered root first."""
    ancestors = await get_retry_ancestors(db, run)
    descendants = await get_retry_descendants(db, run)
    return [*reversed(ancestors), run, *descendants]


async def get_job_stats(db: AsyncSession, since: datetime | None = None) -> JobStatsResponse:
    """
    Aggregate statistics for runs created since `since` (default: last 24h).

    Returns:
        Totals per status, success rate over terminal runs, average duration,
        and top-N breakdowns by class, exception and tag
    """
    since = since or get_cutoff(hours=24)
    window = JobRun.created_at >= since

    status_rows = await db.execute(
        select(JobRun.status, func.count(JobRun.id)).where(window).group_by(JobRun.status)
    )
    counts = {JobStatus(status): count for status, count in status_rows.all()}
    processed = counts.get(JobStatus.PROCESSED, 0)
    failed = counts.get(JobStatus.FAILED, 0)
    processing = counts.get(JobStatus.PROCESSING, 0)
    finished = processed + failed

    avg_result = await db.execute(
        select(func.avg(JobRun.duration_ms)).where(window, JobRun.duration_ms.is_not(None))
    )
    avg_duration = avg_result.scalar()

    failing_rows = await db.execute(
        select(JobRun.job_class, func.count(JobRun.id))
        .where(window, JobRun.status == JobStatus.FAILED)
        .group_by(JobRun.job_class)
        .order_by(func.count(JobRun.id).desc(), JobRun.job_class)
        .limit(TOP_N)
    )
    exception_rows = await db.execute(
        select(JobRun.exception_class, func.count(JobRun.id))
        .where(window, JobRun.exception_class.is_not(None))
        .group_by(JobRun.exception_class)
        .order_by(func.count(JobRun.id).desc(), JobRun.exception_class)
        .limit(TOP_N)
    )
    slow_rows = await db.execute(
        select(
            JobRun.job_class,
            func.avg(JobRun.duration_ms),
            func.max(JobRun.duration_ms),
            func.count(JobRun.id),
        )
        .where(window, JobRun.duration_ms.is_not(None))
        .group_by(JobRun.job_class)
        .order_by(func.avg(JobRun.duration_ms).desc())
        .limit(TOP_N)
    )

    return JobStatsResponse(
        since=since,
        total=sum(counts.values()),
        processed=processed,
        failed=failed,
        processing=processing,
        success_rate=processed / finished if finished > 0 else 0.0,
        avg_duration_ms=float(avg_duration) if avg_duration is not None else None,
        top_failing=[ClassCount(name=name, count=n) for name, n in failing_rows.all()],
        top_exceptions=[ClassCount(name=name, count=n) for name, n in exception_rows.all()],
        slowest=[
            SlowJob(
                job_class=job_class,
                avg_duration_ms=float(avg_ms),
                max_duration_ms=int(max_ms),
                count=n,
            )
            for job_class, avg_ms, max_ms, n in slow_rows.all()
        ],
        top_tags=await _tag_stats(db, since),
    )


async def _tag_stats(db: AsyncSession, since: datetime) -> list[TagStats]:
    # JSON arrays cannot be unnested portably, so tags are counted here
    result = await db.execute(
        select(JobRun.tags, JobRun.status).where(
            JobRun.created_at >= since, JobRun.tags.is_not(None)
        )
    )

    totals: Counter[str] = Counter()
    by_status: dict[JobStatus, Counter[str]] = {status: Counter() for status in JobStatus}
    for tags, status in result.all():
        for tag in tags or []:
            totals[tag] += 1
            by_status[JobStatus(status)][tag] += 1

    return [
        TagStats(
            tag=tag,
            total=total,
            processed=by_status[JobStatus.PROCESSED][tag],
            failed=by_status[JobStatus.FAILED][tag],
            processing=by_status[JobStatus.PROCESSING][tag],
        )
        for tag, total in totals.most_common(TOP_N)
    ]


async def prune_job_runs(db: AsyncSession, older_than_days: int) -> int:
    """
    Delete terminal runs created more than `older_than_days` ago.

    Processing rows are kept regardless of age. Retries of deleted runs
    survive with their link cleared.

    Returns:
        Number of deleted rows
    """
    cutoff = get_cutoff(days=older_than_days)
    expired = select(JobRun.id).where(
        JobRun.created_at < cutoff,
        JobRun.status.in_(JobStatus.terminal_statuses()),
    )

    # Not every backend enforces ON DELETE SET NULL
    await db.execute(
        update(JobRun)
        .where(JobRun.retried_from_id.in_(expired))
        .values(retried_from_id=None)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(
        delete(JobRun)
        .where(JobRun.id.in_(expired))
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount or 0
    logger.bind(deleted=deleted, older_than_days=older_than_days).info("job_runs_pruned")
    return deleted
