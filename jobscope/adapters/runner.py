"""
Generic runner adapter.

Wrap the body of a job with `track()` and the start, success and failure
signals are emitted around it:

    async with track(recorder, JobDescriptor.from_payload(payload, queue="emails")):
        await send_email(payload)
"""

from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager

from jobscope.core.errors import StoreError
from jobscope.core.logging import get_logger
from jobscope.models.job_run import JobRun
from jobscope.schemas.descriptor import FailureInfo, JobDescriptor
from jobscope.services.lifecycle_recorder import LifecycleRecorder

logger = get_logger(__name__)


async def record_signal(
    signal: str,
    descriptor: JobDescriptor,
    pending: Awaitable[JobRun | None],
) -> JobRun | None:
    """Await a recorder call; store failures are logged, never raised to the job."""
    try:
        return await pending
    except StoreError as e:
        logger.bind(
            signal=signal,
            job_class=descriptor.job_class,
            run_id=descriptor.run_id,
            error=str(e),
        ).error("job_signal_not_recorded")
        return None


@asynccontextmanager
async def track(recorder: LifecycleRecorder, descriptor: JobDescriptor) -> AsyncIterator[JobDescriptor]:
    """Record one execution of a job around the wrapped block."""
    await record_signal("start", descriptor, recorder.handle_start(descriptor))
    try:
        yield descriptor
    except Exception as exc:
        await record_signal(
            "failure",
            descriptor,
            recorder.handle_failure(descriptor, FailureInfo.from_exception(exc)),
        )
        raise
    await record_signal("success", descriptor, recorder.handle_success(descriptor))
