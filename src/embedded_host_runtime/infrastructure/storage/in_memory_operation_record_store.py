"""In-memory operation record store."""

from __future__ import annotations

import asyncio
import json

from embedded_host_runtime.domain.operations import OperationRecord
from embedded_host_runtime.domain.ports import OperationRecordStore
from embedded_host_runtime.infrastructure.storage.record_codec import (
    decode_record,
    encode_record,
    stored_belongs_to_other,
    stored_is_newer,
)


class InMemoryOperationRecordStore(OperationRecordStore):
    """Serialized slots kept in process memory, for local development and tests.

    Records are stored as JSON text so reads exercise the same decoding path as
    durable adapters.
    """

    def __init__(self) -> None:
        self._slots: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_record(self, kind: str) -> OperationRecord | None:
        """Return by kind."""

        raw = self._slots.get(kind)
        if raw is None:
            return None
        return decode_record(kind, raw)

    async def list_kinds(self) -> list[str]:
        """Return stored kinds."""

        return sorted(self._slots)

    async def put_record(self, record: OperationRecord) -> bool:
        """Store unless a newer checkpoint is already present."""

        async with self._lock:
            existing_raw = self._slots.get(record.kind)
            if stored_is_newer(existing_raw, record):
                return False
            self._slots[record.kind] = json.dumps(encode_record(record))
            return True

    async def delete_record(self, kind: str, operation_id: str | None = None) -> None:
        """Delete by kind, guarded by operation id when given."""

        async with self._lock:
            raw = self._slots.get(kind)
            if raw is None:
                return
            if stored_belongs_to_other(kind, raw, operation_id):
                return
            self._slots.pop(kind, None)

    async def clear(self) -> None:
        """Drop every slot."""

        async with self._lock:
            self._slots.clear()

    async def close(self) -> None:
        """Nothing to release."""

    def put_raw(self, kind: str, raw: str) -> None:
        """Write an arbitrary payload into a slot, bypassing validation."""

        self._slots[kind] = raw

    def snapshot(self) -> dict[str, str]:
        """Return a copy of the raw slots."""

        return dict(self._slots)


__all__ = ["InMemoryOperationRecordStore"]
