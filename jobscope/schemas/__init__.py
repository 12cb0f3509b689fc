from jobscope.schemas.descriptor import RETRY_MARKER_KEY, FailureInfo, JobDescriptor
from jobscope.schemas.job_run import (
    JobRunDetailResponse,
    JobRunFilter,
    JobRunResponse,
    JobStatsResponse,
    RetryChainResponse,
)
from jobscope.schemas.queue import QueueDepth

__all__ = [
    "RETRY_MARKER_KEY",
    "FailureInfo",
    "JobDescriptor",
    "JobRunFilter",
    "JobRunResponse",
    "JobRunDetailResponse",
    "RetryChainResponse",
    "JobStatsResponse",
    "QueueDepth",
]
