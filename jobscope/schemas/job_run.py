"""Job run API and query schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobscope.models.enums import JobStatus


class JobRunFilter(BaseModel):
    """Filters accepted by job run listing."""

    status: JobStatus | None = None
    job_class: str | None = None
    queue: str | None = None
    tag: str | None = None
    any_tags: list[str] = Field(default_factory=list)
    all_tags: list[str] = Field(default_factory=list)
    exclude_tag: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class JobRunResponse(BaseModel):
    """Response model for a job run."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    run_id: str
    job_class: str
    queue: str | None
    connection: str | None
    attempt: int
    status: JobStatus
    started_at: datetime | None
    finished_at: datetime | None
    duration_ms: int | None
    exception_class: str | None
    exception_message: str | None
    tags: list[str] | None
    retried_from_id: int | None
    memory_peak_delta_bytes: int | None
    cpu_user_ms: int | None
    cpu_sys_ms: int | None
    created_at: datetime


class JobRunDetailResponse(JobRunResponse):
    """Job run with stack trace, payload and full telemetry."""

    stack: str | None
    payload: dict[str, Any] | None
    memory_start_bytes: int | None
    memory_end_bytes: int | None
    memory_peak_start_bytes: int | None
    memory_peak_end_bytes: int | None
    cpu_total_ms: int | None


class RetryChainResponse(BaseModel):
    """A run with its retry ancestors (nearest first) and descendants."""

    run: JobRunResponse
    ancestors: list[JobRunResponse]
    descendants: list[JobRunResponse]


class ClassCount(BaseModel):
    name: str
    count: int


class SlowJob(BaseModel):
    job_class: str
    avg_duration_ms: float
    max_duration_ms: int
    count: int


class TagStats(BaseModel):
    tag: str
    total: int
    processed: int
    failed: int
    processing: int


class JobStatsResponse(BaseModel):
    """Aggregated statistics over a time window."""

    since: datetime
    total: int
    processed: int
    failed: int
    processing: int
    success_rate: float
    avg_duration_ms: float | None
    top_failing: list[ClassCount]
    top_exceptions: list[ClassCount]
    slowest: list[SlowJob]
    top_tags: list[TagStats]
