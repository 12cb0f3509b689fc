"""Rebuild retryable jobs from stored payload snapshots."""

from dataclasses import dataclass, field
from typing import Any

from jobscope.core.errors import RetryRestoreError
from jobscope.core.logging import get_logger
from jobscope.models.job_run import JobRun
from jobscope.schemas.descriptor import RETRY_MARKER_KEY, JobDescriptor

logger = get_logger(__name__)


@dataclass
class RetryRequest:
    """What a dispatcher needs to push a failed job back onto its queue."""

    job_class: str
    queue: str | None
    connection: str | None
    raw_payload: dict[str, Any]
    retried_from: int
    command_data: dict[str, Any] = field(default_factory=dict)

    def to_descriptor(self) -> JobDescriptor:
        """Descriptor for the retried attempt, linked back to the original run."""
        payload = {k: v for k, v in self.raw_payload.items() if k not in ("uuid", "id")}
        return JobDescriptor.from_payload(
            payload,
            queue=self.queue,
            connection=self.connection,
            job_class=self.job_class,
            attempts=1,
        )


def restore_retry_request(run: JobRun) -> RetryRequest:
    """
    Rebuild a retry request from a recorded run.

    The returned raw payload carries the retry marker pointing at `run`, so
    the retried attempt is linked into the same chain when it starts.

    Raises:
        RetryRestoreError: If the run has no usable payload snapshot
    """
    snapshot = run.payload
    if not isinstance(snapshot, dict):
        raise RetryRestoreError(f"job run {run.id} has no stored payload")

    raw_payload = snapshot.get("raw_payload")
    if not isinstance(raw_payload, dict) or not raw_payload:
        raise RetryRestoreError(f"job run {run.id} payload has no raw job payload")

    job_info = snapshot.get("job_info")
    if not isinstance(job_info, dict):
        job_info = {}

    command_data = snapshot.get("command_data")

    request = RetryRequest(
        job_class=job_info.get("name") or run.job_class,
        queue=job_info.get("queue", run.queue),
        connection=job_info.get("connection", run.connection),
        raw_payload={**raw_payload, RETRY_MARKER_KEY: run.id},
        retried_from=run.id,
        command_data=command_data if isinstance(command_data, dict) else {},
    )
    logger.bind(job_run_id=run.id, job_class=request.job_class).info("retry_request_restored")
    return request
