"""Status and policy enums shared by models, config and services."""

import enum


class JobStatus(str, enum.Enum):
    """Lifecycle state of a recorded job run."""

    PROCESSING = "processing"  # Picked up by a worker
    PROCESSED = "processed"  # Completed successfully
    FAILED = "failed"  # Raised an exception

    @property
    def is_terminal(self) -> bool:
        """Terminal states never transition again."""
        return self is not JobStatus.PROCESSING

    @classmethod
    def terminal_statuses(cls) -> list["JobStatus"]:
        return [cls.PROCESSED, cls.FAILED]


class PayloadStrategy(str, enum.Enum):
    """When job payload snapshots are captured."""

    ALWAYS = "always"  # Every job, on start and terminal
    ON_FAILURE = "on_failure"  # Only when the job fails
    NEVER = "never"  # Only when a caller forces extraction

    @property
    def should_extract_on_start(self) -> bool:
        return self is PayloadStrategy.ALWAYS

    @property
    def should_extract_on_failure(self) -> bool:
        return self is not PayloadStrategy.NEVER

    @classmethod
    def from_string_or_default(cls, value: str | None) -> "PayloadStrategy":
        """Parse a config value, falling back to ON_FAILURE."""
        if value is None:
            return cls.ON_FAILURE
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.ON_FAILURE
