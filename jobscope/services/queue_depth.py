"""
Queue depth probe.

Counts pending jobs per queue with a strategy matching the queue driver:

- database: unreserved rows in the queue's jobs table
- redis: length of each configured queue list
- anything else: job runs currently processing, as a proxy
"""

from typing import Any

from sqlalchemy import column, func, or_, select, table
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobscope.config import AppConfig, QueueConfig, QueueConnectionConfig, get_config
from jobscope.core.logging import get_logger
from jobscope.models.enums import JobStatus
from jobscope.models.job_run import JobRun
from jobscope.schemas.queue import QueueDepth

logger = get_logger(__name__)

STATUS_NORMAL = "normal"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"
STATUS_HEALTHY = "healthy"  # placeholder entry when nothing could be measured


def classify_depth(depth: int, warning_threshold: int = 100, critical_threshold: int = 1000) -> str:
    """Map a depth onto normal / warning / critical."""
    if depth >= critical_threshold:
        return STATUS_CRITICAL
    if depth >= warning_threshold:
        return STATUS_WARNING
    return STATUS_NORMAL


class QueueDepthProbe:
    """Point-in-time pending job counts for the default queue connection."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: QueueConfig,
        redis_client: Any = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._connection: QueueConnectionConfig = config.default_connection()
        self._redis = redis_client

    @property
    def driver(self) -> str:
        return self._connection.driver

    async def depth_of(self, queue: str) -> int:
        """Pending jobs on one queue."""
        depths = await self._depths(queue)
        return depths.get(queue, 0)

    async def depth_with_metadata(self) -> dict[str, QueueDepth]:
        """Depth, driver, connection and health status for every known queue."""
        depths = await self._depths()
        return {
            queue: QueueDepth(
                depth=depth,
                driver=self.driver,
                connection=self._connection.name,
                status=classify_depth(
                    depth,
                    self._config.warning_threshold,
                    self._config.critical_threshold,
                ),
            )
            for queue, depth in depths.items()
        }

    async def depth_with_metadata_always(self) -> dict[str, QueueDepth]:
        """Like depth_with_metadata, but never empty, even if probing fails."""
        try:
            depths = await self.depth_with_metadata()
        except Exception as e:
            logger.bind(driver=self.driver, error=str(e)).warning("queue_depth_probe_failed")
            depths = {}

        if depths:
            return depths

        return {
            self._connection.queue: QueueDepth(
                depth=0,
                driver=self.driver,
                connection=self._connection.name,
                status=STATUS_HEALTHY,
            )
        }

    async def total_depth(self) -> int:
        depths = await self.depth_with_metadata()
        return sum(d.depth for d in depths.values())

    async def _depths(self, queue: str | None = None) -> dict[str, int]:
        if self.driver == "database":
            return await self._database_depths(queue)
        if self.driver == "redis":
            return await self._redis_depths(queue)

        logger.bind(driver=self.driver).debug("queue_depth_driver_fallback")
        return await self._processing_depths(queue)

    async def _database_depths(self, queue: str | None) -> dict[str, int]:
        jobs = table(self._connection.table, column("queue"), column("reserved_at"))
        stmt = (
            select(jobs.c.queue, func.count())
            .where(jobs.c.reserved_at.is_(None))
            .group_by(jobs.c.queue)
            .order_by(jobs.c.queue)
        )
        if queue is not None:
            stmt = stmt.where(jobs.c.queue == queue)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {row[0]: int(row[1]) for row in result.all()}

    async def _redis_depths(self, queue: str | None) -> dict[str, int]:
        client = self._redis_client()
        queues = [queue] if queue is not None else self._connection.queues
        depths: dict[str, int] = {}
        for name in queues:
            depths[name] = int(await client.llen(f"{self._connection.prefix}{name}"))
        return depths

    async def _processing_depths(self, queue: str | None) -> dict[str, int]:
        default_queue = self._connection.queue
        stmt = (
            select(JobRun.queue, func.count(JobRun.id))
            .where(JobRun.status == JobStatus.PROCESSING)
            .group_by(JobRun.queue)
        )
        if queue == default_queue:
            stmt = stmt.where(or_(JobRun.queue == queue, JobRun.queue.is_(None)))
        elif queue is not None:
            stmt = stmt.where(JobRun.queue == queue)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            # Runs recorded without a queue belong to the default queue
            depths: dict[str, int] = {}
            for name, count in result.all():
                key = name or default_queue
                depths[key] = depths.get(key, 0) + int(count)
            return dict(sorted(depths.items()))

    def _redis_client(self) -> Any:
        if self._redis is None:
            import redis.asyncio as redis

            from jobscope.config import get_settings

            url = get_settings().redis_url or "redis://localhost:6379/0"
            self._redis = redis.from_url(url, decode_responses=True)
        return self._redis


def get_queue_depth_probe(config: AppConfig | None = None) -> QueueDepthProbe:
    """Build a probe for the configured default connection."""
    from jobscope.core.database import AsyncSessionLocal

    config = config or get_config()
    return QueueDepthProbe(AsyncSessionLocal, config.queue)
