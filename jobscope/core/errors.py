"""Error taxonomy for the recording engine.

Soft errors (signal loss, extraction, denied deserialization) are logged and
contained; they never reach the job runner. StoreError is raised to whoever
called the recorder.
"""


class JobscopeError(Exception):
    """Base class for jobscope errors."""


class SignalLossError(JobscopeError):
    """A terminal signal arrived without an open processing row."""

    def __init__(self, run_id: str, job_class: str) -> None:
        self.run_id = run_id
        self.job_class = job_class
        super().__init__(f"no processing row for {job_class} run {run_id}")


class ExtractionError(JobscopeError):
    """Tag or payload extraction failed."""


class DeserializationDenied(ExtractionError):
    """An embedded command resolved to a class outside the allow-list."""

    def __init__(self, class_name: str) -> None:
        self.class_name = class_name
        super().__init__(f"class not allowed for deserialization: {class_name}")


class StoreError(JobscopeError):
    """The persistence transaction failed."""


class RetryRestoreError(JobscopeError):
    """A stored payload cannot be turned back into a retryable job."""
