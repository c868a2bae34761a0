"""Infrastructure layer public API."""

from embedded_host_runtime.infrastructure.backend import BackendClient
from embedded_host_runtime.infrastructure.events import (
    MqttOperationEventPublisher,
    NoopOperationEventPublisher,
)
from embedded_host_runtime.infrastructure.host import HostGlobalRegistry
from embedded_host_runtime.infrastructure.storage import (
    InMemoryOperationRecordStore,
    JsonFileOperationRecordStore,
    PostgresOperationRecordStore,
)

__all__ = [
    "BackendClient",
    "HostGlobalRegistry",
    "InMemoryOperationRecordStore",
    "JsonFileOperationRecordStore",
    "MqttOperationEventPublisher",
    "NoopOperationEventPublisher",
    "PostgresOperationRecordStore",
]
