"""Job execution history model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jobscope.models.base import Base, TimestampMixin
from jobscope.models.enums import JobStatus


class JobRun(Base, TimestampMixin):
    """Records one execution attempt of a queued job."""

    __tablename__ = "job_runs"
    __table_args__ = (
        Index("ix_job_runs_run_id_status", "run_id", "status"),
        Index("ix_job_runs_status_queue_created", "status", "queue", "created_at"),
        Index("ix_job_runs_class_created", "job_class", "created_at"),
        Index("ix_job_runs_created_duration", "created_at", "duration_ms"),
        Index("ix_job_runs_queue_status_created", "queue", "status", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(255), index=True)
    job_class: Mapped[str] = mapped_column(String(255), index=True)
    queue: Mapped[str | None] = mapped_column(String(255))
    connection: Mapped[str | None] = mapped_column(String(255))
    attempt: Mapped[int] = mapped_column(Integer, default=1)

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            values_callable=lambda e: [x.value for x in e],
            name="jobstatus",
            native_enum=False,
            length=20,
        ),
        default=JobStatus.PROCESSING,
    )

    # Timing
    started_at: Mapped[datetime | None]
    finished_at: Mapped[datetime | None]
    duration_ms: Mapped[int | None] = mapped_column(BigInteger)

    # Failure details (capped before write)
    exception_class: Mapped[str | None] = mapped_column(String(255))
    exception_message: Mapped[str | None] = mapped_column(Text)
    stack: Mapped[str | None] = mapped_column(Text)

    # Captured context
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True))
    tags: Mapped[list[str] | None] = mapped_column(JSON(none_as_null=True))

    # Retry chain
    retried_from_id: Mapped[int | None] = mapped_column(
        ForeignKey("job_runs.id", ondelete="SET NULL"), index=True
    )
    retried_from: Mapped["JobRun | None"] = relationship(
        "JobRun", remote_side=[id], back_populates="retries"
    )
    retries: Mapped[list["JobRun"]] = relationship("JobRun", back_populates="retried_from")

    # Telemetry (nullable when disabled or not sampled)
    memory_start_bytes: Mapped[int | None] = mapped_column(BigInteger)
    memory_end_bytes: Mapped[int | None] = mapped_column(BigInteger)
    memory_peak_start_bytes: Mapped[int | None] = mapped_column(BigInteger)
    memory_peak_end_bytes: Mapped[int | None] = mapped_column(BigInteger)
    memory_peak_delta_bytes: Mapped[int | None] = mapped_column(BigInteger)
    cpu_user_ms: Mapped[int | None] = mapped_column(BigInteger)
    cpu_sys_ms: Mapped[int | None] = mapped_column(BigInteger)

    @property
    def cpu_total_ms(self) -> int | None:
        """User plus system CPU time, None when neither was captured."""
        if self.cpu_user_ms is None and self.cpu_sys_ms is None:
            return None
        return (self.cpu_user_ms or 0) + (self.cpu_sys_ms or 0)

    def __repr__(self) -> str:
        return f"<JobRun {self.id} {self.job_class} run={self.run_id} status={self.status.value}>"
