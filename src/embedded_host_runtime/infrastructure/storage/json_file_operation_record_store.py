"""JSON-file operation record store (local durable storage)."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from contextlib import suppress
from pathlib import Path
from typing import Any

from embedded_host_runtime.domain.errors import (
    CorruptOperationRecordError,
    StorageUnavailableError,
)
from embedded_host_runtime.domain.operations import OperationRecord
from embedded_host_runtime.domain.ports import OperationRecordStore
from embedded_host_runtime.infrastructure.storage.record_codec import (
    decode_record,
    encode_record,
    stored_belongs_to_other,
    stored_is_newer,
)

_DEFAULT_MAX_BYTES = 64 * 1024

logger = logging.getLogger(__name__)


class JsonFileOperationRecordStore(OperationRecordStore):
    """Keep one JSON document mapping operation kind to its record."""

    def __init__(self, path: str | Path, max_bytes: int = _DEFAULT_MAX_BYTES) -> None:
        self._path = Path(path)
        self._max_bytes = max(max_bytes, 1024)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        """Return the backing file path."""

        return self._path

    async def get_record(self, kind: str) -> OperationRecord | None:
        """Return by kind."""

        document = await self._read_document()
        raw = document.get(kind)
        if raw is None:
            return None
        return decode_record(kind, raw)

    async def list_kinds(self) -> list[str]:
        """Return stored kinds."""

        document = await self._read_document()
        return sorted(document)

    async def put_record(self, record: OperationRecord) -> bool:
        """Store unless a newer checkpoint is already present."""

        async with self._lock:
            document = await self._read_document_for_write()
            existing_raw = document.get(record.kind)
            if stored_is_newer(existing_raw, record):
                return False
            document[record.kind] = encode_record(record)
            await self._write_document(document)
            return True

    async def delete_record(self, kind: str, operation_id: str | None = None) -> None:
        """Delete by kind, guarded by operation id when given."""

        async with self._lock:
            try:
                document = await self._read_document()
            except CorruptOperationRecordError:
                logger.warning("Discarding corrupt operation record file %s.", self._path)
                await self._write_document({})
                return
            raw = document.get(kind)
            if raw is None:
                return
            if stored_belongs_to_other(kind, raw, operation_id):
                return
            document.pop(kind, None)
            await self._write_document(document)

    async def clear(self) -> None:
        """Reset the file to an empty document."""

        async with self._lock:
            await self._write_document({})

    async def close(self) -> None:
        """Nothing to release."""

    async def _read_document(self) -> dict[str, Any]:
        try:
            text = await asyncio.to_thread(self._read_text)
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot read {self._path}: {exc}") from exc
        if text is None or not text.strip():
            return {}
        try:
            document = json.loads(text)
        except ValueError as exc:
            raise CorruptOperationRecordError(f"{self._path} is not valid JSON.") from exc
        if not isinstance(document, dict):
            raise CorruptOperationRecordError(f"{self._path} does not hold a JSON object.")
        return document

    async def _read_document_for_write(self) -> dict[str, Any]:
        try:
            return await self._read_document()
        except CorruptOperationRecordError:
            logger.warning("Discarding corrupt operation record file %s.", self._path)
            return {}

    async def _write_document(self, document: dict[str, Any]) -> None:
        text = json.dumps(document, separators=(",", ":"), sort_keys=True)
        if len(text.encode()) > self._max_bytes:
            raise StorageUnavailableError(
                f"Operation record storage quota exceeded ({self._max_bytes} bytes)."
            )
        # A cancelled caller keeps the lock until the replace has finished.
        write = asyncio.ensure_future(asyncio.to_thread(self._replace_text, text))
        try:
            await asyncio.shield(write)
        except asyncio.CancelledError:
            with suppress(OSError):
                await write
            raise
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot write {self._path}: {exc}") from exc

    def _read_text(self) -> str | None:
        if not self._path.exists():
            return None
        return self._path.read_text(encoding="utf-8")

    def _replace_text(self, text: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.",
            dir=self._path.parent,
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(temp_name, self._path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise


__all__ = ["JsonFileOperationRecordStore"]
