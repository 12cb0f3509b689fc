"""Create job_runs table

Revision ID: 001_create_job_runs
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_create_job_runs"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("run_id", sa.String(255), nullable=False),
        sa.Column("job_class", sa.String(255), nullable=False),
        sa.Column("queue", sa.String(255), nullable=True),
        sa.Column("connection", sa.String(255), nullable=True),
        sa.Column("attempt", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("exception_class", sa.String(255), nullable=True),
        sa.Column("exception_message", sa.Text(), nullable=True),
        sa.Column("stack", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("retried_from_id", sa.Integer(), nullable=True),
        sa.Column("memory_start_bytes", sa.BigInteger(), nullable=True),
        sa.Column("memory_end_bytes", sa.BigInteger(), nullable=True),
        sa.Column("memory_peak_start_bytes", sa.BigInteger(), nullable=True),
        sa.Column("memory_peak_end_bytes", sa.BigInteger(), nullable=True),
        sa.Column("memory_peak_delta_bytes", sa.BigInteger(), nullable=True),
        sa.Column("cpu_user_ms", sa.BigInteger(), nullable=True),
        sa.Column("cpu_sys_ms", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["retried_from_id"], ["job_runs.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_runs_run_id", "job_runs", ["run_id"])
    op.create_index("ix_job_runs_job_class", "job_runs", ["job_class"])
    op.create_index("ix_job_runs_retried_from_id", "job_runs", ["retried_from_id"])
    op.create_index("ix_job_runs_created_at", "job_runs", ["created_at"])

    # Dashboard and stats query paths
    op.create_index("ix_job_runs_run_id_status", "job_runs", ["run_id", "status"])
    op.create_index(
        "ix_job_runs_status_queue_created", "job_runs", ["status", "queue", "created_at"]
    )
    op.create_index("ix_job_runs_class_created", "job_runs", ["job_class", "created_at"])
    op.create_index("ix_job_runs_created_duration", "job_runs", ["created_at", "duration_ms"])
    op.create_index(
        "ix_job_runs_queue_status_created", "job_runs", ["queue", "status", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_job_runs_queue_status_created", table_name="job_runs")
    op.drop_index("ix_job_runs_created_duration", table_name="job_runs")
    op.drop_index("ix_job_runs_class_created", table_name="job_runs")
    op.drop_index("ix_job_runs_status_queue_created", table_name="job_runs")
    op.drop_index("ix_job_runs_run_id_status", table_name="job_runs")
    op.drop_index("ix_job_runs_created_at", table_name="job_runs")
    op.drop_index("ix_job_runs_retried_from_id", table_name="job_runs")
    op.drop_index("ix_job_runs_job_class", table_name="job_runs")
    op.drop_index("ix_job_runs_run_id", table_name="job_runs")
    op.drop_table("job_runs")
