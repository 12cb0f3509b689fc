"""
APScheduler integration for FastAPI.

Runs retention housekeeping in-process:

- Hourly prune: deletes terminal job runs older than the retention window

When a recorder is passed in, jobs run by this scheduler are recorded too.
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from jobscope.config import get_config, get_settings
from jobscope.core.database import AsyncSessionLocal
from jobscope.core.logging import get_logger

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def prune_job(days: int | None = None) -> int:
    """Hourly retention job - deletes old terminal job runs."""
    from jobscope.services.job_runs import prune_job_runs

    days = days if days is not None else get_config().retention.days
    logger.bind(days=days).debug("scheduled_prune_started")
    async with AsyncSessionLocal() as db:
        try:
            deleted = await prune_job_runs(db, older_than_days=days)
            await db.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_prune_failed")
            raise  # Re-raise so APScheduler records the failure
    return deleted


async def start_scheduler(recorder: Any = None) -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    # Schedules are re-added on every start, nothing to persist
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Required before calling other methods in APScheduler 4.x
    await scheduler.__aenter__()

    if recorder is not None:
        from jobscope.adapters.apscheduler import APSchedulerListener

        APSchedulerListener(recorder).attach(scheduler)

    await scheduler.add_schedule(
        prune_job,
        CronTrigger(minute=0),
        id="prune_job_runs",
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.start_in_background()

    logger.info("scheduler_started", jobs=["prune_job_runs"])
    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None
