"""Tests for payload snapshots, redaction and restricted deserialization."""

import base64
import pickle
from datetime import UTC, datetime

import pytest

from jobscope.config import PayloadConfig
from jobscope.models.enums import PayloadStrategy
from jobscope.schemas.descriptor import JobDescriptor
from jobscope.services.payload_extractor import (
    REDACTED,
    PayloadExtractor,
    convert_value,
    dump_command,
    qualified_name,
    redact_sensitive,
)


class SendWelcomeEmail:
    """Job object used as a pickled command."""

    def __init__(self, user_id: int, email: str, password: str) -> None:
        self.user_id = user_id
        self.email = email
        self.password = password
        self._attempt_key = "k1"
        self.__secret_note = "private"


class Customer:
    def __init__(self) -> None:
        self.name = "Ada"
        self.age = 36
        self.address = {"city": "London"}
        self._internal = "hidden"


class DescribedJob:
    def __init__(self) -> None:
        self.api_key = "should-not-appear"

    def describe_for_telemetry(self):
        return {"report_id": 7, "format": "pdf"}


def extractor(strategy: str = "always", enabled: bool = True, **extra) -> PayloadExtractor:
    return PayloadExtractor(PayloadConfig({"enabled": enabled, "strategy": strategy, **extra}))


def descriptor(**kwargs) -> JobDescriptor:
    values = {
        "job_class": "App.Jobs.SendWelcomeEmail",
        "stable_id": "u-1",
        "queue": "emails",
        "connection": "redis",
        "raw_payload": {"uuid": "u-1", "displayName": "App.Jobs.SendWelcomeEmail"},
    }
    values.update(kwargs)
    return JobDescriptor(**values)


class TestStrategyGating:
    """extract() honours the configured strategy unless forced."""

    @pytest.mark.parametrize(
        ("strategy", "enabled", "force", "captured"),
        [
            ("always", True, False, True),
            ("on_failure", True, False, False),
            ("on_failure", True, True, True),
            ("never", True, False, False),
            ("never", True, True, True),
            ("always", False, False, False),
            ("always", False, True, True),
        ],
    )
    def test_gating(self, strategy, enabled, force, captured):
        result = extractor(strategy, enabled).extract(descriptor(), force=force)

        assert (result is not None) is captured

    def test_captures_on_failure(self):
        """Ordinary failures carry a payload only for always/on_failure."""
        assert extractor("always").captures_on_failure is True
        assert extractor("on_failure").captures_on_failure is True
        assert extractor("never").captures_on_failure is False
        assert extractor("always", enabled=False).captures_on_failure is False

    @pytest.mark.parametrize(
        "strategy,on_start,on_failure",
        [
            (PayloadStrategy.ALWAYS, True, True),
            (PayloadStrategy.ON_FAILURE, False, True),
            (PayloadStrategy.NEVER, False, False),
        ],
    )
    def test_strategy_flags_drive_gating(self, strategy, on_start, on_failure):
        """Unforced extraction follows should_extract_on_start."""
        assert strategy.should_extract_on_start is on_start
        assert strategy.should_extract_on_failure is on_failure
        captured = extractor(strategy.value).extract(descriptor()) is not None
        assert captured is on_start

    def test_unknown_strategy_defaults_to_on_failure(self):
        assert extractor("sometimes").strategy is PayloadStrategy.ON_FAILURE


class TestSnapshotShape:
    """Tests for the snapshot structure."""

    def test_job_info(self):
        """Should describe the job alongside the raw payload."""
        snapshot = extractor().extract(descriptor(job_id="42", attempts=2))

        assert snapshot["job_info"] == {
            "uuid": "u-1",
            "job_id": "42",
            "name": "App.Jobs.SendWelcomeEmail",
            "queue": "emails",
            "connection": "redis",
            "attempts": 2,
        }
        assert snapshot["raw_payload"]["displayName"] == "App.Jobs.SendWelcomeEmail"
        assert snapshot["command_data"] == {}

    def test_live_command_attributes(self):
        """Should dump every instance attribute, private ones included."""
        job = SendWelcomeEmail(5, "ada@example.com", "hunter2")
        snapshot = extractor().extract(descriptor(command=job))

        data = snapshot["command_data"]
        assert data["user_id"] == 5
        assert data["email"] == "ada@example.com"
        assert data["_attempt_key"] == "k1"
        assert data["_SendWelcomeEmail__secret_note"] == "private"

    def test_describe_for_telemetry_wins(self):
        """Should use the job's own description when it provides one."""
        snapshot = extractor().extract(descriptor(command=DescribedJob()))

        assert snapshot["command_data"] == {"report_id": 7, "format": "pdf"}

    def test_embedded_pickled_command(self):
        """Should unserialize a command embedded in the raw payload."""
        job = SendWelcomeEmail(9, "grace@example.com", "pw")
        raw = {"uuid": "u-1", "data": {"command": base64.b64encode(pickle.dumps(job)).decode()}}

        snapshot = extractor().extract(descriptor(raw_payload=raw))

        assert snapshot["command_data"]["user_id"] == 9


class TestRedaction:
    """Sensitive keys are masked at every depth."""

    def test_payload_redaction_scenario(self):
        """Nested dicts and dicts inside lists are redacted."""
        raw = {
            "user": {"password": "x", "name": "n"},
            "items": [{"token": "t"}],
        }
        snapshot = extractor().extract(descriptor(raw_payload=raw))

        assert snapshot["raw_payload"]["user"] == {"password": REDACTED, "name": "n"}
        assert snapshot["raw_payload"]["items"] == [{"token": REDACTED}]

    def test_command_data_redacted(self):
        job = SendWelcomeEmail(5, "ada@example.com", "hunter2")
        snapshot = extractor().extract(descriptor(command=job))

        assert snapshot["command_data"]["password"] == REDACTED

    def test_case_insensitive(self):
        data = {"Authorization": "Bearer abc", "API_KEY": "k", "nested": {"Secret": 1}}

        assert redact_sensitive(data) == {
            "Authorization": REDACTED,
            "API_KEY": REDACTED,
            "nested": {"Secret": REDACTED},
        }

    def test_idempotent(self):
        data = {"password": "x", "list": [{"token": "y", "ok": 1}]}
        once = redact_sensitive(data)

        assert redact_sensitive(once) == once

    def test_custom_keys(self):
        snapshot = extractor(redact_keys=["ssn"]).extract(
            descriptor(raw_payload={"ssn": "123", "password": "visible"})
        )

        assert snapshot["raw_payload"] == {"ssn": REDACTED, "password": "visible"}


class TestAllowList:
    """Restricted deserialization of job commands."""

    def _raw_with_command(self, job) -> dict:
        return {"uuid": "u-1", "data": {"command": pickle.dumps(job)}}

    def test_allowed_class(self):
        job = SendWelcomeEmail(1, "a@example.com", "p")
        allowed = [qualified_name(SendWelcomeEmail)]

        snapshot = extractor(allowed_job_classes=allowed).extract(
            descriptor(raw_payload=self._raw_with_command(job))
        )

        assert snapshot["command_data"]["user_id"] == 1

    def test_denied_class_omits_command_data_only(self):
        """Should keep the rest of the snapshot when the class is not allowed."""
        job = SendWelcomeEmail(1, "a@example.com", "p")

        snapshot = extractor(allowed_job_classes=["App.Jobs.Other"]).extract(
            descriptor(raw_payload=self._raw_with_command(job))
        )

        assert snapshot is not None
        assert snapshot["command_data"] == {}
        assert snapshot["job_info"]["uuid"] == "u-1"

    def test_empty_allow_list_disables_commands(self):
        job = SendWelcomeEmail(1, "a@example.com", "p")

        snapshot = extractor(allowed_job_classes=[]).extract(descriptor(command=job))

        assert snapshot["command_data"] == {}

    def test_live_command_checked_against_allow_list(self):
        job = SendWelcomeEmail(1, "a@example.com", "p")

        snapshot = extractor(allowed_job_classes=["App.Jobs.Other"]).extract(
            descriptor(command=job)
        )

        assert snapshot["command_data"] == {}


class TestConvertValue:
    """Tests for convert_value."""

    def test_scalars_pass_through(self):
        assert convert_value(1) == 1
        assert convert_value("s") == "s"
        assert convert_value(None) is None
        assert convert_value(True) is True

    def test_containers(self):
        assert convert_value({"a": (1, 2), "b": {3}}) == {"a": [1, 2], "b": [3]}

    def test_datetime(self):
        value = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)

        assert convert_value(value) == {
            "class": "datetime.datetime",
            "date": "2026-01-02 03:04:05",
            "timezone": "UTC",
        }

    def test_plain_object_depth_one(self):
        """Should keep only public scalar attributes of nested objects."""
        result = convert_value(Customer())

        assert result["class"].endswith("Customer")
        assert result["name"] == "Ada"
        assert result["age"] == 36
        assert "address" not in result
        assert "_internal" not in result

    def test_to_dict_objects(self):
        class Money:
            def to_dict(self):
                return {"amount": 10, "currency": "EUR"}

        assert convert_value(Money()) == {"amount": 10, "currency": "EUR"}

    def test_orm_model(self):
        """Should summarize ORM instances by model, id and key attributes."""
        from jobscope.models import JobRun

        run = JobRun(run_id="r", job_class="X")

        result = convert_value(run)

        assert result["model"] == "jobscope.models.job_run.JobRun"
        assert result["id"] is None

    def test_dump_command_uses_convert(self):
        class WithCustomer:
            def __init__(self):
                self.customer = Customer()

        data = dump_command(WithCustomer())

        assert data["customer"]["name"] == "Ada"


class TestExtractionFailure:
    """Extraction errors never propagate."""

    def test_broken_command_returns_none(self):
        class Broken:
            def describe_for_telemetry(self):
                raise RuntimeError("nope")

        assert extractor().extract(descriptor(command=Broken())) is None
