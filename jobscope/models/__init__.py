from jobscope.models.base import Base
from jobscope.models.enums import JobStatus, PayloadStrategy
from jobscope.models.job_run import JobRun

__all__ = [
    "Base",
    "JobRun",
    "JobStatus",
    "PayloadStrategy",
]
