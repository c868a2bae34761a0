from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from embedded_host_runtime.domain.errors import (
    CorruptOperationRecordError,
    StorageUnavailableError,
)
from embedded_host_runtime.domain.operations import OperationRecord, RemoteOperationStatus
from embedded_host_runtime.domain.ports import OperationRecordStore
from embedded_host_runtime.infrastructure.storage import (
    InMemoryOperationRecordStore,
    JsonFileOperationRecordStore,
)

_STARTED = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _record(kind: str = "install", operation_id: str = "op-1") -> OperationRecord:
    return OperationRecord.new(
        operation_id=operation_id,
        kind=kind,
        status=RemoteOperationStatus.RUNNING,
        progress_fraction=0.1,
        ttl_seconds=3600,
        now=_STARTED,
    )


@pytest.fixture(params=["memory", "file"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> OperationRecordStore:
    if request.param == "memory":
        return InMemoryOperationRecordStore()
    return JsonFileOperationRecordStore(tmp_path / "state" / "operations.json")


def test_put_and_get_round_trip_by_kind(store: OperationRecordStore) -> None:
    record = _record()

    async def scenario() -> tuple[OperationRecord | None, list[str]]:
        await store.put_record(record)
        return await store.get_record("install"), await store.list_kinds()

    stored, kinds = asyncio.run(scenario())

    assert stored == record
    assert kinds == ["install"]


def test_older_checkpoint_never_replaces_newer(store: OperationRecordStore) -> None:
    first = _record()
    newer = first.checkpoint(
        status=RemoteOperationStatus.RUNNING,
        progress_fraction=0.8,
        ttl_seconds=3600,
        now=_STARTED + timedelta(seconds=30),
    )
    older = first.checkpoint(
        status=RemoteOperationStatus.RUNNING,
        progress_fraction=0.5,
        ttl_seconds=3600,
        now=_STARTED + timedelta(seconds=10),
    )

    async def scenario() -> tuple[bool, bool, OperationRecord | None]:
        accepted = await store.put_record(newer)
        rejected = await store.put_record(older)
        return accepted, rejected, await store.get_record("install")

    accepted, rejected, stored = asyncio.run(scenario())

    assert accepted is True
    assert rejected is False
    assert stored is not None
    assert stored.last_known_progress_fraction == 0.8


def test_guarded_delete_keeps_record_of_another_operation(store: OperationRecordStore) -> None:
    async def scenario() -> tuple[OperationRecord | None, OperationRecord | None]:
        await store.put_record(_record(operation_id="op-2"))
        await store.delete_record("install", "op-1")
        kept = await store.get_record("install")
        await store.delete_record("install", "op-2")
        return kept, await store.get_record("install")

    kept, deleted = asyncio.run(scenario())

    assert kept is not None
    assert kept.operation_id == "op-2"
    assert deleted is None


def test_unconditional_delete_of_missing_kind_is_a_noop(store: OperationRecordStore) -> None:
    async def scenario() -> list[str]:
        await store.delete_record("repair")
        return await store.list_kinds()

    assert asyncio.run(scenario()) == []


def test_in_memory_store_raises_on_corrupt_slot() -> None:
    store = InMemoryOperationRecordStore()
    store.put_raw("install", '{"operationId": "op-1"}')

    with pytest.raises(CorruptOperationRecordError):
        asyncio.run(store.get_record("install"))


def test_file_store_reports_corrupt_document_and_recovers_on_write(tmp_path: Path) -> None:
    path = tmp_path / "operations.json"
    path.write_text("{truncated", encoding="utf-8")
    store = JsonFileOperationRecordStore(path)

    with pytest.raises(CorruptOperationRecordError):
        asyncio.run(store.get_record("install"))

    asyncio.run(store.put_record(_record()))

    assert asyncio.run(store.get_record("install")) == _record()


def test_file_store_survives_new_instance(tmp_path: Path) -> None:
    path = tmp_path / "operations.json"
    asyncio.run(JsonFileOperationRecordStore(path).put_record(_record(kind="update")))

    reopened = JsonFileOperationRecordStore(path)

    assert asyncio.run(reopened.list_kinds()) == ["update"]


def test_file_store_enforces_quota(tmp_path: Path) -> None:
    store = JsonFileOperationRecordStore(tmp_path / "operations.json", max_bytes=1024)

    async def scenario() -> None:
        for index in range(20):
            await store.put_record(_record(kind=f"kind-{index}"))

    with pytest.raises(StorageUnavailableError, match="quota"):
        asyncio.run(scenario())


def test_clear_drops_every_kind(store: OperationRecordStore) -> None:
    async def scenario() -> list[str]:
        await store.put_record(_record(kind="install"))
        await store.put_record(_record(kind="update", operation_id="op-2"))
        await store.clear()
        return await store.list_kinds()

    assert asyncio.run(scenario()) == []


def test_file_store_delete_rewrites_corrupt_document(tmp_path: Path) -> None:
    path = tmp_path / "operations.json"
    path.write_text("[1, 2", encoding="utf-8")
    store = JsonFileOperationRecordStore(path)

    asyncio.run(store.delete_record("install"))

    assert asyncio.run(store.list_kinds()) == []
    assert path.read_text(encoding="utf-8") == "{}"


def test_file_store_cancelled_write_lands_before_later_delete(tmp_path: Path) -> None:
    store = JsonFileOperationRecordStore(tmp_path / "operations.json")

    async def scenario() -> list[str]:
        put = asyncio.create_task(store.put_record(_record()))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        put.cancel()
        await asyncio.gather(put, return_exceptions=True)
        await store.delete_record("install")
        await asyncio.sleep(0.05)
        return await store.list_kinds()

    assert asyncio.run(scenario()) == []
