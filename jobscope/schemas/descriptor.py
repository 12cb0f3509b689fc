"""Runner-neutral description of a job execution.

Adapters fill these fields at the boundary with a concrete job runner, so the
recorder never has to probe job objects for optional capabilities.
"""

import traceback
import uuid
from dataclasses import dataclass, field
from typing import Any

# Key a retry dispatcher writes into the raw payload to link attempts
RETRY_MARKER_KEY = "retried_from_id"


@dataclass
class FailureInfo:
    """Exception details captured for a failed job."""

    exception_class: str
    message: str
    stack: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "FailureInfo":
        exc_type = type(exc)
        return cls(
            exception_class=f"{exc_type.__module__}.{exc_type.__qualname__}",
            message=str(exc),
            stack="".join(traceback.format_exception(exc_type, exc, exc.__traceback__)),
        )


@dataclass
class JobDescriptor:
    """Everything the recorder needs to know about one job attempt."""

    job_class: str
    stable_id: str | None = None
    job_id: str | None = None
    queue: str | None = None
    connection: str | None = None
    attempts: int = 1
    retried_from: int | None = None
    is_released: bool = False
    is_deleted_or_released: bool = False
    raw_payload: dict[str, Any] = field(default_factory=dict)
    command: Any = None
    declared_tags: list[Any] | None = None
    _generated_id: str | None = field(default=None, init=False, repr=False)

    @property
    def has_stable_id(self) -> bool:
        return bool(self.stable_id) or bool(self.job_id)

    @property
    def run_id(self) -> str:
        """Best available identifier: runner uuid, then job id, then a generated one."""
        if self.stable_id:
            return str(self.stable_id)
        if self.job_id:
            return str(self.job_id)
        if self._generated_id is None:
            self._generated_id = uuid.uuid4().hex
        return self._generated_id

    @property
    def skip_success(self) -> bool:
        """Released jobs were re-queued, not completed."""
        return self.is_released or self.is_deleted_or_released

    @classmethod
    def from_payload(
        cls,
        raw_payload: dict[str, Any],
        queue: str | None = None,
        connection: str | None = None,
        **overrides: Any,
    ) -> "JobDescriptor":
        """Build a descriptor from a serialized queue payload.

        Recognised keys: uuid, id, job/displayName, attempts, tags and the
        retry marker. Explicit keyword overrides win.
        """
        retried_from = raw_payload.get(RETRY_MARKER_KEY)
        values: dict[str, Any] = {
            "job_class": raw_payload.get("displayName") or raw_payload.get("job") or "unknown",
            "stable_id": raw_payload.get("uuid"),
            "job_id": str(raw_payload["id"]) if raw_payload.get("id") is not None else None,
            "queue": queue,
            "connection": connection,
            "attempts": int(raw_payload.get("attempts") or 1),
            "retried_from": int(retried_from) if retried_from is not None else None,
            "raw_payload": raw_payload,
            "declared_tags": raw_payload.get("tags"),
        }
        values.update(overrides)
        return cls(**values)
