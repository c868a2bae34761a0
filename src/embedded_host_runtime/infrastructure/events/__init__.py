"""Operation event publisher implementations."""

from embedded_host_runtime.infrastructure.events.mqtt_operation_event_publisher import (
    MqttOperationEventPublisher,
)
from embedded_host_runtime.infrastructure.events.noop_operation_event_publisher import (
    NoopOperationEventPublisher,
)

__all__ = ["MqttOperationEventPublisher", "NoopOperationEventPublisher"]
