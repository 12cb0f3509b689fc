"""Tests for the APScheduler event adapter."""

from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from apscheduler import JobOutcome

from jobscope.adapters.apscheduler import APSchedulerListener
from jobscope.core.errors import StoreError

pytestmark = pytest.mark.asyncio


def released(outcome: JobOutcome, **kwargs) -> SimpleNamespace:
    values = {
        "job_id": uuid4(),
        "task_id": "jobscope.core.scheduler:prune_job",
        "schedule_id": "prune_job_runs",
        "outcome": outcome,
        "exception_type": None,
        "exception_message": None,
        "exception_traceback": None,
    }
    values.update(kwargs)
    return SimpleNamespace(**values)


class TestReleasedMapping:
    """JobReleased outcomes map to recorder signals."""

    async def test_success(self):
        recorder = AsyncMock()
        event = released(JobOutcome.success)

        await APSchedulerListener(recorder)._on_released(event)

        descriptor = recorder.handle_success.await_args.args[0]
        assert descriptor.stable_id == str(event.job_id)
        assert descriptor.job_class == "jobscope.core.scheduler:prune_job"
        assert descriptor.queue == "prune_job_runs"
        assert descriptor.connection == "apscheduler"
        assert descriptor.skip_success is False
        recorder.handle_failure.assert_not_awaited()

    async def test_error(self):
        recorder = AsyncMock()
        event = released(
            JobOutcome.error,
            exception_type="builtins.RuntimeError",
            exception_message="boom",
            exception_traceback=["Traceback\n", "RuntimeError: boom\n"],
        )

        await APSchedulerListener(recorder)._on_released(event)

        _, failure = recorder.handle_failure.await_args.args
        assert failure.exception_class == "builtins.RuntimeError"
        assert failure.message == "boom"
        assert failure.stack == "Traceback\nRuntimeError: boom\n"

    async def test_missed_deadline_is_failure(self):
        recorder = AsyncMock()

        await APSchedulerListener(recorder)._on_released(released(JobOutcome.missed_start_deadline))

        _, failure = recorder.handle_failure.await_args.args
        assert failure.exception_class == "JobOutcome.missed_start_deadline"

    async def test_cancelled_is_released(self):
        recorder = AsyncMock()

        await APSchedulerListener(recorder)._on_released(released(JobOutcome.cancelled))

        descriptor = recorder.handle_success.await_args.args[0]
        assert descriptor.skip_success is True
        recorder.handle_failure.assert_not_awaited()

    async def test_store_error_swallowed(self):
        recorder = AsyncMock()
        recorder.handle_success.side_effect = StoreError("db down")

        await APSchedulerListener(recorder)._on_released(released(JobOutcome.success))

    async def test_end_to_end_with_recorder(self, recorder, fetch_runs):
        """Start via the descriptor, then release; the same row is completed."""
        listener = APSchedulerListener(recorder)
        event = released(JobOutcome.success)

        await recorder.handle_start(listener._descriptor(event))
        await listener._on_released(event)

        rows = await fetch_runs()
        assert len(rows) == 1
        assert rows[0].status.value == "processed"
