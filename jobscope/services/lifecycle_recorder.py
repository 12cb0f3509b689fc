"""
Lifecycle recording for job runs.

Turns the three runner signals (start, success, failure) into one JobRun row
per execution attempt:

- start always inserts a processing row
- success/failure update the open processing row for the run, or insert a
  terminal row when the start was never recorded
- the CPU baseline for the run is evicted after every terminal signal

Each signal is one transaction against the shared store. Workers never
coordinate in-process; the store is the only point of mutual exclusion.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobscope.config import AppConfig, get_config
from jobscope.core.datetime_utils import duration_ms, get_cutoff, utc_now
from jobscope.core.errors import SignalLossError, StoreError
from jobscope.core.logging import get_logger
from jobscope.core.telemetry import TelemetrySampler, cpu_delta_ms, peak_delta_bytes
from jobscope.models.enums import JobStatus
from jobscope.models.job_run import JobRun
from jobscope.schemas.descriptor import FailureInfo, JobDescriptor
from jobscope.services.baseline_store import BaselineStore
from jobscope.services.notifications import FailureNotifier, get_failure_notifier
from jobscope.services.payload_extractor import PayloadExtractor
from jobscope.services.tag_extractor import TagExtractor

logger = get_logger(__name__)

EXCEPTION_MESSAGE_LIMIT = 2000
STACK_LIMIT = 4000

# How far back a terminal signal without a stable id may look for its start
HEURISTIC_MATCH_WINDOW_SECONDS = 60


def limit_text(value: str | None, limit: int, end: str = "...") -> str | None:
    """Truncate to at most `limit` characters, marking the cut."""
    if value is None or len(value) <= limit:
        return value
    return value[: max(0, limit - len(end))] + end


@dataclass
class EndTelemetry:
    memory_end_bytes: int | None = None
    memory_peak_end_bytes: int | None = None
    cpu_user_ms: int | None = None
    cpu_sys_ms: int | None = None


class LifecycleRecorder:
    """Records job start/success/failure signals as JobRun rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: AppConfig,
        baselines: BaselineStore,
        payloads: PayloadExtractor | None = None,
        tags: TagExtractor | None = None,
        sampler: TelemetrySampler | None = None,
        notifier: FailureNotifier | None = None,
        sample_draw: Callable[[], float] = random.random,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._baselines = baselines
        self._payloads = payloads or PayloadExtractor(config.payload)
        self._tags = tags or TagExtractor()
        self._sampler = sampler or TelemetrySampler()
        self._notifier = notifier
        self._sample_draw = sample_draw

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    async def handle_start(self, descriptor: JobDescriptor) -> JobRun | None:
        """
        Record that a worker picked up a job.

        Always inserts a new processing row; no matching is done here.

        Returns:
            The stored row, or None when recording is disabled

        Raises:
            StoreError: If the insert transaction fails
        """
        if not self._config.enabled:
            return None

        run_id = descriptor.run_id
        memory_start: int | None = None
        memory_peak_start: int | None = None

        if self._telemetry_sampled():
            memory = self._sampler.memory()
            memory_start = memory.current_bytes
            memory_peak_start = memory.peak_bytes

            # CPU baseline stays in memory only
            if self._config.telemetry.capture_cpu:
                cpu = self._sampler.cpu()
                if cpu is not None:
                    self._baselines.set(
                        run_id,
                        {"cpu_start_user_us": cpu.user_us, "cpu_start_sys_us": cpu.sys_us},
                    )

        tags = self._tags.extract(descriptor)
        payload = self._payloads.extract(descriptor)

        try:
            async with self._session_factory() as session, session.begin():
                run = JobRun(
                    run_id=run_id,
                    job_class=descriptor.job_class,
                    queue=descriptor.queue,
                    connection=descriptor.connection,
                    attempt=max(1, descriptor.attempts),
                    status=JobStatus.PROCESSING,
                    started_at=utc_now(),
                    retried_from_id=await self._resolve_retry_of(session, descriptor),
                    payload=payload,
                    tags=tags,
                    memory_start_bytes=memory_start,
                    memory_peak_start_bytes=memory_peak_start,
                )
                session.add(run)
                await session.flush()
        except SQLAlchemyError as e:
            self._baselines.clear(run_id)
            logger.bind(run_id=run_id, job_class=descriptor.job_class, error=str(e)).error(
                "job_run_start_store_failed"
            )
            raise StoreError(f"failed to record start of {descriptor.job_class}") from e

        logger.bind(job_run_id=run.id, run_id=run_id, job_class=run.job_class).debug(
            "job_run_started"
        )
        return run

    async def handle_success(self, descriptor: JobDescriptor) -> JobRun | None:
        """
        Record that a job completed.

        Jobs the runner released back onto the queue (rate limiting,
        cooperative release) are not completions and are dropped untouched.

        Raises:
            StoreError: If the transaction fails
        """
        if not self._config.enabled:
            return None

        if descriptor.skip_success:
            logger.bind(
                job_class=descriptor.job_class,
                released=descriptor.is_released,
                deleted_or_released=descriptor.is_deleted_or_released,
            ).debug("job_run_released_skipped")
            return None

        run = await self._handle_terminal(descriptor, JobStatus.PROCESSED)
        logger.bind(job_run_id=run.id, job_class=run.job_class, duration_ms=run.duration_ms).debug(
            "job_run_completed"
        )
        return run

    async def handle_failure(self, descriptor: JobDescriptor, failure: FailureInfo) -> JobRun | None:
        """
        Record that a job failed and notify once.

        Raises:
            StoreError: If the transaction fails (no notification is sent)
        """
        if not self._config.enabled:
            return None

        run = await self._handle_terminal(descriptor, JobStatus.FAILED, failure)
        logger.bind(
            job_run_id=run.id,
            job_class=run.job_class,
            exception=run.exception_class,
        ).info("job_run_failed")

        await self._notify_failure(run)
        return run

    # ------------------------------------------------------------------
    # Terminal handling
    # ------------------------------------------------------------------

    async def _handle_terminal(
        self,
        descriptor: JobDescriptor,
        status: JobStatus,
        failure: FailureInfo | None = None,
    ) -> JobRun:
        run_id = descriptor.run_id
        try:
            return await self._record_terminal(descriptor, run_id, status, failure)
        finally:
            self._baselines.clear(run_id)

    async def _record_terminal(
        self,
        descriptor: JobDescriptor,
        run_id: str,
        status: JobStatus,
        failure: FailureInfo | None,
    ) -> JobRun:
        telemetry = self._end_telemetry(run_id)

        try:
            async with self._session_factory() as session, session.begin():
                run = await self._find_open_run(session, descriptor, run_id)
                if run is not None:
                    self._apply_terminal(run, status, telemetry, failure)
                    if failure is not None and run.payload is None and self._payloads.captures_on_failure:
                        run.payload = self._payloads.extract(descriptor, force=True)
                else:
                    run = await self._insert_terminal(
                        session, descriptor, run_id, status, telemetry, failure
                    )
                await session.flush()
        except SQLAlchemyError as e:
            logger.bind(run_id=run_id, job_class=descriptor.job_class, error=str(e)).error(
                "job_run_terminal_store_failed"
            )
            raise StoreError(
                f"failed to record {status.value} for {descriptor.job_class}"
            ) from e

        return run

    async def _find_open_run(
        self,
        session: AsyncSession,
        descriptor: JobDescriptor,
        run_id: str,
    ) -> JobRun | None:
        """
        Locate the open processing row for this run.

        With a stable id the lookup is exact. Without one, fall back to the
        newest processing row of the same class/queue/connection created
        within the match window. That fallback can pick the wrong row when
        identical jobs run concurrently on one queue.
        """
        stmt = select(JobRun).where(JobRun.status == JobStatus.PROCESSING)

        if descriptor.has_stable_id:
            stmt = stmt.where(JobRun.run_id == run_id)
        else:
            stmt = stmt.where(
                JobRun.job_class == descriptor.job_class,
                JobRun.queue.is_(None) if descriptor.queue is None else JobRun.queue == descriptor.queue,
                (
                    JobRun.connection.is_(None)
                    if descriptor.connection is None
                    else JobRun.connection == descriptor.connection
                ),
                JobRun.created_at > get_cutoff(seconds=HEURISTIC_MATCH_WINDOW_SECONDS),
            )

        stmt = stmt.order_by(JobRun.id.desc()).limit(1).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    def _apply_terminal(
        self,
        run: JobRun,
        status: JobStatus,
        telemetry: EndTelemetry,
        failure: FailureInfo | None,
    ) -> None:
        now = utc_now()
        run.status = status
        run.finished_at = now
        if run.started_at is not None:
            run.duration_ms = duration_ms(run.started_at, now)

        run.memory_end_bytes = telemetry.memory_end_bytes
        run.memory_peak_end_bytes = telemetry.memory_peak_end_bytes
        delta = peak_delta_bytes(run.memory_peak_start_bytes, telemetry.memory_peak_end_bytes)
        if delta is not None:
            run.memory_peak_delta_bytes = delta
        run.cpu_user_ms = telemetry.cpu_user_ms
        run.cpu_sys_ms = telemetry.cpu_sys_ms

        if failure is not None:
            _apply_failure(run, failure)

    async def _insert_terminal(
        self,
        session: AsyncSession,
        descriptor: JobDescriptor,
        run_id: str,
        status: JobStatus,
        telemetry: EndTelemetry,
        failure: FailureInfo | None,
    ) -> JobRun:
        signal_loss = SignalLossError(run_id, descriptor.job_class)
        logger.bind(
            job_class=descriptor.job_class,
            run_id=run_id,
            status=status.value,
            error=str(signal_loss),
        ).warning("job_run_start_missing")

        run = JobRun(
            run_id=run_id,
            job_class=descriptor.job_class,
            queue=descriptor.queue,
            connection=descriptor.connection,
            attempt=max(1, descriptor.attempts),
            status=status,
            finished_at=utc_now(),
            retried_from_id=await self._resolve_retry_of(session, descriptor),
            # Failure is the most valuable moment for context: always capture
            payload=self._payloads.extract(descriptor, force=failure is not None),
            tags=self._tags.extract(descriptor),
            memory_end_bytes=telemetry.memory_end_bytes,
            memory_peak_end_bytes=telemetry.memory_peak_end_bytes,
            cpu_user_ms=telemetry.cpu_user_ms,
            cpu_sys_ms=telemetry.cpu_sys_ms,
        )
        if failure is not None:
            _apply_failure(run, failure)

        session.add(run)
        return run

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _telemetry_sampled(self) -> bool:
        telemetry = self._config.telemetry
        return telemetry.enabled and self._sample_draw() < telemetry.sample_rate

    def _end_telemetry(self, run_id: str) -> EndTelemetry:
        telemetry = self._config.telemetry
        if not telemetry.enabled:
            return EndTelemetry()

        memory = self._sampler.memory()
        result = EndTelemetry(
            memory_end_bytes=memory.current_bytes,
            memory_peak_end_bytes=memory.peak_bytes,
        )

        if telemetry.capture_cpu:
            baseline = self._baselines.get(run_id)
            cpu = self._sampler.cpu() if baseline else None
            if baseline and cpu is not None:
                result.cpu_user_ms = cpu_delta_ms(baseline.get("cpu_start_user_us", 0), cpu.user_us)
                result.cpu_sys_ms = cpu_delta_ms(baseline.get("cpu_start_sys_us", 0), cpu.sys_us)

        return result

    async def _resolve_retry_of(self, session: AsyncSession, descriptor: JobDescriptor) -> int | None:
        """Retry links must point at an existing row."""
        if descriptor.retried_from is None:
            return None
        parent = await session.get(JobRun, descriptor.retried_from)
        if parent is None:
            logger.bind(
                job_class=descriptor.job_class,
                retried_from=descriptor.retried_from,
            ).warning("job_run_retry_parent_missing")
            return None
        return parent.id

    async def _notify_failure(self, run: JobRun) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify_failure(run)
        except Exception as e:
            logger.bind(job_run_id=run.id, error=str(e)).error("failure_notification_error")


def _apply_failure(run: JobRun, failure: FailureInfo) -> None:
    run.exception_class = limit_text(failure.exception_class, 255)
    run.exception_message = limit_text(failure.message, EXCEPTION_MESSAGE_LIMIT)
    run.stack = limit_text(failure.stack, STACK_LIMIT)


_recorder_instance: LifecycleRecorder | None = None


def get_recorder() -> LifecycleRecorder:
    """
    Get the process-wide recorder.

    Built once per process from the application config; the baseline store
    it owns is therefore shared by every job handled in this process.
    """
    global _recorder_instance
    if _recorder_instance is not None:
        return _recorder_instance

    from jobscope.core.database import AsyncSessionLocal

    config = get_config()
    _recorder_instance = LifecycleRecorder(
        session_factory=AsyncSessionLocal,
        config=config,
        baselines=BaselineStore(),
        notifier=get_failure_notifier(config),
    )
    return _recorder_instance


def reset_recorder() -> None:
    """Reset the recorder instance. Useful for testing."""
    global _recorder_instance
    _recorder_instance = None
