"""Decoding helpers shared by operation record stores."""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from embedded_host_runtime.domain.errors import CorruptOperationRecordError
from embedded_host_runtime.domain.operations import OperationRecord


def decode_record(kind: str, raw: str | bytes | dict[str, Any]) -> OperationRecord:
    """Decode one stored payload or raise CorruptOperationRecordError."""

    try:
        payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError as exc:
        raise CorruptOperationRecordError(
            f"Stored operation record for kind '{kind}' is not valid JSON."
        ) from exc
    if not isinstance(payload, dict):
        raise CorruptOperationRecordError(
            f"Stored operation record for kind '{kind}' is not a JSON object."
        )
    try:
        return OperationRecord.model_validate(payload)
    except ValidationError as exc:
        raise CorruptOperationRecordError(
            f"Stored operation record for kind '{kind}' failed validation: "
            f"{exc.error_count()} error(s)."
        ) from exc


def stored_is_newer(raw: str | bytes | dict[str, Any] | None, record: OperationRecord) -> bool:
    """Return whether a stored payload holds a later checkpoint than `record`."""

    existing = _decode_or_none(record.kind, raw)
    return existing is not None and existing.last_checkpoint_at > record.last_checkpoint_at


def stored_belongs_to_other(
    kind: str,
    raw: str | bytes | dict[str, Any] | None,
    operation_id: str | None,
) -> bool:
    """Return whether a guarded delete must keep the stored payload."""

    if operation_id is None:
        return False
    existing = _decode_or_none(kind, raw)
    return existing is not None and existing.operation_id != operation_id


def _decode_or_none(
    kind: str,
    raw: str | bytes | dict[str, Any] | None,
) -> OperationRecord | None:
    if raw is None:
        return None
    try:
        return decode_record(kind, raw)
    except CorruptOperationRecordError:
        return None


def encode_record(record: OperationRecord) -> dict[str, Any]:
    """Return the JSON-compatible camelCase payload of a record."""

    return record.model_dump(mode="json", by_alias=True)


__all__ = ["decode_record", "encode_record", "stored_belongs_to_other", "stored_is_newer"]
