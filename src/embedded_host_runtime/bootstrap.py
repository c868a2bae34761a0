"""Application bootstrap/wiring."""

import logging

from embedded_host_runtime.application.services import (
    EmbeddedRuntime,
    HybridDataCoordinator,
    OperationTracker,
    ReadinessGate,
    RetryPolicy,
    global_defined,
)
from embedded_host_runtime.config import Settings, StorageBackend
from embedded_host_runtime.domain.ports import OperationEventPublisher, OperationRecordStore
from embedded_host_runtime.domain.readiness import ReadinessOptions
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

logger = logging.getLogger(__name__)


def _build_store(settings: Settings) -> OperationRecordStore:
    if settings.storage_backend == StorageBackend.POSTGRES:
        if settings.postgres_dsn is None:
            raise ValueError("EHR_POSTGRES_DSN is required when EHR_STORAGE_BACKEND=postgres.")
        return PostgresOperationRecordStore(
            dsn=settings.postgres_dsn,
            min_pool_size=settings.postgres_pool_min_size,
            max_pool_size=settings.postgres_pool_max_size,
        )
    if settings.storage_backend == StorageBackend.FILE:
        if settings.storage_file_path is None:
            raise ValueError("EHR_STORAGE_FILE_PATH is required when EHR_STORAGE_BACKEND=file.")
        return JsonFileOperationRecordStore(
            path=settings.storage_file_path,
            max_bytes=settings.storage_file_max_bytes,
        )
    return InMemoryOperationRecordStore()


def _build_operation_event_publisher(settings: Settings) -> OperationEventPublisher:
    if not settings.operation_events_mqtt_enabled:
        return NoopOperationEventPublisher()
    if settings.operation_events_mqtt_host is None:
        raise ValueError(
            "EHR_OPERATION_EVENTS_MQTT_HOST is required when "
            "EHR_OPERATION_EVENTS_MQTT_ENABLED=true."
        )
    try:
        return MqttOperationEventPublisher(
            runtime_id=settings.runtime_id,
            broker_host=settings.operation_events_mqtt_host,
            broker_port=settings.operation_events_mqtt_port,
            topic_prefix=settings.operation_events_mqtt_topic_prefix,
            qos=settings.operation_events_mqtt_qos,
            username=settings.operation_events_mqtt_username,
            password=settings.operation_events_mqtt_password,
        )
    except RuntimeError as exc:
        logger.warning(
            "Operation events disabled; MQTT broker '%s' unavailable: %s",
            settings.operation_events_mqtt_host,
            exc,
        )
        return NoopOperationEventPublisher()


def _build_readiness_gate(settings: Settings, registry: HostGlobalRegistry) -> ReadinessGate:
    signals = [global_defined(registry, name) for name in settings.readiness_required_globals]
    return ReadinessGate(
        signals,
        options=ReadinessOptions(
            poll_interval_seconds=settings.readiness_poll_interval_seconds,
            max_attempts=settings.readiness_max_attempts,
            initial_delay_seconds=settings.readiness_initial_delay_seconds,
            loading_initial_delay_seconds=settings.readiness_loading_initial_delay_seconds,
        ),
        registry=registry,
    )


def build_runtime(
    settings: Settings,
    registry: HostGlobalRegistry | None = None,
    backend_client: BackendClient | None = None,
    store: OperationRecordStore | None = None,
) -> EmbeddedRuntime:
    """Compose runtime graph."""

    registry = registry or HostGlobalRegistry()

    def session_token() -> str | None:
        token = registry.get(settings.host_session_token_global)
        return str(token) if token else None

    client = backend_client or BackendClient(
        base_url=settings.backend_base_url,
        timeout_seconds=settings.backend_timeout_seconds,
        session_token=settings.backend_session_token,
        token_provider=session_token,
    )
    store = store or _build_store(settings)

    coordinator = HybridDataCoordinator(
        registry=registry,
        query_endpoint=client,
        context_global=settings.host_context_global,
        enhanced_global=settings.host_enhanced_global,
        stale_after_seconds=settings.query_stale_after_seconds,
        evict_after_seconds=settings.query_evict_after_seconds,
        request_timeout_seconds=settings.query_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=settings.query_retry_max_attempts,
            base_delay_seconds=settings.query_retry_base_delay_seconds,
            max_delay_seconds=settings.query_retry_max_delay_seconds,
            jitter_ratio=settings.query_retry_jitter_ratio,
        ),
        significant_difference_ratio=settings.significant_difference_ratio,
    )
    tracker = OperationTracker(
        store=store,
        poll_endpoint=client,
        supported_kinds=settings.operation_kinds,
        poll_interval_seconds=settings.operation_poll_interval_seconds,
        checkpoint_debounce_seconds=settings.operation_checkpoint_debounce_seconds,
        recovery_ttl_seconds=settings.operation_recovery_ttl_seconds,
        max_consecutive_poll_failures=settings.operation_max_consecutive_poll_failures,
        verify_with_server=settings.operation_verify_with_server,
    )

    return EmbeddedRuntime(
        registry=registry,
        readiness_gate=_build_readiness_gate(settings, registry),
        coordinator=coordinator,
        tracker=tracker,
        store=store,
        event_publisher=_build_operation_event_publisher(settings),
        launcher=client,
    )


__all__ = ["build_runtime"]
