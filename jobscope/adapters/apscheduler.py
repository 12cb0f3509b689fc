"""
APScheduler 4 adapter.

Subscribes to scheduler events and records every job execution:

- JobAcquired: start
- JobReleased with outcome success: success
- JobReleased with outcome cancelled: released, nothing recorded
- JobReleased with any other outcome: failure
"""

from typing import Any

from apscheduler import AsyncScheduler, JobAcquired, JobOutcome, JobReleased

from jobscope.adapters.runner import record_signal
from jobscope.core.logging import get_logger
from jobscope.schemas.descriptor import FailureInfo, JobDescriptor
from jobscope.services.lifecycle_recorder import LifecycleRecorder

logger = get_logger(__name__)

CONNECTION_NAME = "apscheduler"


class APSchedulerListener:
    """Event subscriber turning APScheduler job events into recorder signals."""

    def __init__(self, recorder: LifecycleRecorder, connection: str = CONNECTION_NAME) -> None:
        self._recorder = recorder
        self._connection = connection

    def attach(self, scheduler: AsyncScheduler) -> None:
        scheduler.subscribe(self, {JobAcquired, JobReleased})
        logger.bind(connection=self._connection).debug("apscheduler_listener_attached")

    async def __call__(self, event: Any) -> None:
        if isinstance(event, JobAcquired):
            descriptor = self._descriptor(event)
            await record_signal("start", descriptor, self._recorder.handle_start(descriptor))
        elif isinstance(event, JobReleased):
            await self._on_released(event)

    async def _on_released(self, event: Any) -> None:
        outcome = getattr(event, "outcome", None)

        if outcome == JobOutcome.success:
            descriptor = self._descriptor(event)
            await record_signal("success", descriptor, self._recorder.handle_success(descriptor))
            return

        if outcome == JobOutcome.cancelled:
            descriptor = self._descriptor(event, is_released=True)
            await record_signal("success", descriptor, self._recorder.handle_success(descriptor))
            return

        descriptor = self._descriptor(event)
        await record_signal(
            "failure",
            descriptor,
            self._recorder.handle_failure(descriptor, _failure_info(event)),
        )

    def _descriptor(self, event: Any, is_released: bool = False) -> JobDescriptor:
        job_id = getattr(event, "job_id", None)
        schedule_id = getattr(event, "schedule_id", None)
        return JobDescriptor(
            job_class=getattr(event, "task_id", None) or "unknown",
            stable_id=str(job_id) if job_id is not None else None,
            queue=schedule_id,
            connection=self._connection,
            is_released=is_released,
            raw_payload={
                "job_id": str(job_id) if job_id is not None else None,
                "task_id": getattr(event, "task_id", None),
                "schedule_id": schedule_id,
            },
        )


def _failure_info(event: Any) -> FailureInfo:
    outcome = getattr(event, "outcome", None)
    traceback_lines = getattr(event, "exception_traceback", None) or []
    return FailureInfo(
        exception_class=getattr(event, "exception_type", None)
        or f"JobOutcome.{getattr(outcome, 'name', 'unknown')}",
        message=getattr(event, "exception_message", None) or "",
        stack="".join(traceback_lines),
    )
