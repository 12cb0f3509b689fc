"""
Job payload snapshots for debugging and retries.

A snapshot combines the raw transport payload, a dump of the job object's
attributes and a few identifying fields. Sensitive keys are redacted at every
depth before the snapshot leaves this module.
"""

import base64
import binascii
import enum
import io
import json
import pickle
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import inspect as sa_inspect

from jobscope.config import DEFAULT_REDACT_KEYS, PayloadConfig
from jobscope.core.errors import DeserializationDenied
from jobscope.core.logging import get_logger
from jobscope.models.enums import PayloadStrategy
from jobscope.schemas.descriptor import JobDescriptor

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

# Attributes kept when a nested ORM instance is summarized
MODEL_KEY_ATTRIBUTES = ("name", "email", "title", "slug")

# Guard against self-referencing containers
MAX_CONTAINER_DEPTH = 16

# Always loadable, regardless of the configured allow-list
SAFE_GLOBALS = {
    ("builtins", "set"),
    ("builtins", "frozenset"),
    ("builtins", "list"),
    ("builtins", "dict"),
    ("builtins", "tuple"),
    ("builtins", "bytes"),
    ("builtins", "bytearray"),
    ("builtins", "complex"),
    ("builtins", "object"),
    ("copyreg", "_reconstructor"),
    ("datetime", "date"),
    ("datetime", "datetime"),
    ("datetime", "time"),
    ("datetime", "timedelta"),
    ("datetime", "timezone"),
    ("decimal", "Decimal"),
    ("uuid", "UUID"),
    ("zoneinfo", "ZoneInfo"),
}


@runtime_checkable
class TelemetryDescribable(Protocol):
    """Jobs implementing this control exactly what gets captured."""

    def describe_for_telemetry(self) -> Mapping[str, Any]: ...


class _AllowListUnpickler(pickle.Unpickler):
    """Unpickler that refuses globals outside an allow-list."""

    def __init__(self, data: bytes, allowed: set[str]) -> None:
        super().__init__(io.BytesIO(data))
        self._allowed = allowed

    def find_class(self, module: str, name: str) -> Any:
        if (module, name) in SAFE_GLOBALS or f"{module}.{name}" in self._allowed:
            return super().find_class(module, name)
        raise DeserializationDenied(f"{module}.{name}")


def qualified_name(obj: Any) -> str:
    cls = obj if isinstance(obj, type) else type(obj)
    return f"{cls.__module__}.{cls.__qualname__}"


class PayloadExtractor:
    """Builds redacted payload snapshots according to the configured strategy."""

    def __init__(self, config: PayloadConfig) -> None:
        self._config = config

    @property
    def strategy(self) -> PayloadStrategy:
        return self._config.strategy

    @property
    def captures_on_failure(self) -> bool:
        """Whether an ordinary failure (not a lost start) should carry a payload."""
        return self._config.enabled and self._config.strategy.should_extract_on_failure

    def extract(self, descriptor: JobDescriptor, force: bool = False) -> dict[str, Any] | None:
        """
        Snapshot the job payload if the strategy allows it.

        Args:
            descriptor: The job being recorded
            force: Capture even when the strategy would skip it (failure path)

        Returns:
            JSON-safe redacted snapshot, or None when skipped or extraction failed
        """
        if not self._should_extract(force):
            return None

        try:
            return self._extract_payload_data(descriptor)
        except Exception as e:
            logger.bind(job_class=descriptor.job_class, error=str(e)).error(
                "payload_extraction_failed"
            )
            return None

    def _should_extract(self, force: bool) -> bool:
        if force:
            return True
        return self._config.enabled and self._config.strategy.should_extract_on_start

    def _extract_payload_data(self, descriptor: JobDescriptor) -> dict[str, Any]:
        command = self._resolve_command(descriptor)
        command_data = dump_command(command) if command is not None else {}

        full_data = {
            "raw_payload": convert_value(descriptor.raw_payload),
            "command_data": command_data,
            "job_info": {
                "uuid": descriptor.stable_id,
                "job_id": descriptor.job_id,
                "name": descriptor.job_class,
                "queue": descriptor.queue,
                "connection": descriptor.connection,
                "attempts": descriptor.attempts,
            },
        }
        full_data = redact_sensitive(full_data, self._config.redact_keys)
        # Round-trip so the snapshot is guaranteed to fit a JSON column
        snapshot: dict[str, Any] = json.loads(json.dumps(full_data, default=str))

        logger.bind(
            command_class=qualified_name(command) if command is not None else None,
            raw_payload_keys=list(descriptor.raw_payload.keys()),
            command_data_keys=list(command_data.keys()),
        ).debug("payload_extracted")
        return snapshot

    def _resolve_command(self, descriptor: JobDescriptor) -> Any:
        """Return the job object, or None if absent or denied by the allow-list."""
        allowed = self._config.allowed_job_classes
        if allowed is not None and len(allowed) == 0:
            logger.warning("payload_command_extraction_disabled")
            return None

        serialized = _embedded_command(descriptor.raw_payload)
        try:
            if serialized is not None:
                return self._unserialize(serialized, allowed)
            if descriptor.command is not None:
                name = qualified_name(descriptor.command)
                if allowed is not None and name not in allowed:
                    raise DeserializationDenied(name)
                return descriptor.command
        except DeserializationDenied as e:
            logger.bind(job_class=descriptor.job_class, denied_class=e.class_name).warning(
                "payload_command_denied"
            )
        return None

    def _unserialize(self, serialized: bytes, allowed: list[str] | None) -> Any:
        try:
            if allowed is None:
                return pickle.loads(serialized)
            return _AllowListUnpickler(serialized, set(allowed)).load()
        except DeserializationDenied:
            raise
        except Exception as e:
            logger.bind(error=str(e)).warning("payload_command_unserialize_failed")
            return None


def _embedded_command(raw_payload: Mapping[str, Any]) -> bytes | None:
    data = raw_payload.get("data")
    if not isinstance(data, Mapping):
        return None
    command = data.get("command")
    if isinstance(command, bytes | bytearray):
        return bytes(command)
    if isinstance(command, str):
        try:
            return base64.b64decode(command, validate=True)
        except (binascii.Error, ValueError):
            return None
    return None


def dump_command(command: Any) -> dict[str, Any]:
    """All attributes of a job object, converted to JSON-safe values."""
    if isinstance(command, TelemetryDescribable):
        attributes = dict(command.describe_for_telemetry())
    else:
        attributes = _instance_attributes(command)
    return {str(key): convert_value(value) for key, value in attributes.items()}


def _instance_attributes(obj: Any) -> dict[str, Any]:
    attributes: dict[str, Any] = dict(getattr(obj, "__dict__", {}))
    for cls in type(obj).__mro__:
        for slot in getattr(cls, "__slots__", ()):
            if slot not in attributes and hasattr(obj, slot):
                attributes[slot] = getattr(obj, slot)
    return attributes


def convert_value(value: Any, _depth: int = 0) -> Any:
    """
    Convert a value to a JSON-safe form.

    Containers are converted recursively; nested objects are summarized by
    class name plus their public scalar attributes and are not descended into.
    """
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if _depth >= MAX_CONTAINER_DEPTH:
        return None

    if isinstance(value, enum.Enum):
        return convert_value(value.value, _depth + 1)
    if isinstance(value, bytes | bytearray):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Decimal | UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): convert_value(v, _depth + 1) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [convert_value(v, _depth + 1) for v in value]
    if isinstance(value, datetime):
        return {
            "class": qualified_name(value),
            "date": value.strftime("%Y-%m-%d %H:%M:%S"),
            "timezone": str(value.tzinfo) if value.tzinfo else None,
        }
    if isinstance(value, date | time):
        return {"class": qualified_name(value), "date": value.isoformat(), "timezone": None}

    model = _summarize_model(value)
    if model is not None:
        return model

    if isinstance(value, BaseModel):
        return convert_value(value.model_dump(mode="json"), _depth + 1)

    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        try:
            return convert_value(to_dict(), _depth + 1)
        except Exception:
            return {"class": qualified_name(value), "type": "collection"}

    object_data: dict[str, Any] = {"class": qualified_name(value)}
    for key, attr in _instance_attributes(value).items():
        if not key.startswith("_") and (attr is None or isinstance(attr, bool | int | float | str)):
            object_data[key] = attr
    return object_data


def _summarize_model(value: Any) -> dict[str, Any] | None:
    """ORM instances become {model, id, key attributes}; None for anything else."""
    state = sa_inspect(value, raiseerr=False)
    if state is None or not hasattr(state, "mapper"):
        return None

    identity = state.identity
    model_data: dict[str, Any] = {
        "model": qualified_name(value),
        "id": convert_value(identity[0] if identity and len(identity) == 1 else identity),
    }
    loaded = state.dict
    for attr in MODEL_KEY_ATTRIBUTES:
        if loaded.get(attr) is not None:
            model_data[attr] = convert_value(loaded[attr])
    return model_data


def redact_sensitive(data: Any, sensitive_keys: list[str] | None = None) -> Any:
    """Replace values under sensitive keys (case-insensitive) at every depth."""
    keys = {k.lower() for k in (sensitive_keys if sensitive_keys is not None else DEFAULT_REDACT_KEYS)}
    return _redact(data, keys)


def _redact(data: Any, keys: set[str]) -> Any:
    if isinstance(data, Mapping):
        return {
            key: REDACTED if str(key).lower() in keys else _redact(value, keys)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_redact(item, keys) for item in data]
    return data
