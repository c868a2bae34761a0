"""Durable operation record stores."""

from embedded_host_runtime.infrastructure.storage.in_memory_operation_record_store import (
    InMemoryOperationRecordStore,
)
from embedded_host_runtime.infrastructure.storage.json_file_operation_record_store import (
    JsonFileOperationRecordStore,
)
from embedded_host_runtime.infrastructure.storage.postgres_operation_record_store import (
    PostgresOperationRecordStore,
)

__all__ = [
    "InMemoryOperationRecordStore",
    "JsonFileOperationRecordStore",
    "PostgresOperationRecordStore",
]
