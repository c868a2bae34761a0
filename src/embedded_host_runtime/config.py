"""Application settings."""

import json
from enum import StrEnum
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from embedded_host_runtime.domain.operations import OperationKind


class StorageBackend(StrEnum):
    """Available durable stores for operation records."""

    IN_MEMORY = "in_memory"
    FILE = "file"
    POSTGRES = "postgres"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "Embedded Host Runtime"
    api_prefix: str = ""
    runtime_id: str = "runtime-local"
    host: str = "0.0.0.0"
    port: int = 8080

    backend_base_url: str = "http://localhost:8081/api"
    backend_timeout_seconds: float = 10.0
    backend_session_token: str | None = None

    readiness_required_globals: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["sessionToken", "hostContext"]
    )
    readiness_poll_interval_seconds: float = 0.1
    readiness_max_attempts: int = 50
    readiness_initial_delay_seconds: float = 0.0
    readiness_loading_initial_delay_seconds: float = 0.05
    host_context_global: str = "hostContext"
    host_session_token_global: str = "sessionToken"
    host_enhanced_global: str = "enhancedData"

    query_stale_after_seconds: float = 30.0
    query_evict_after_seconds: float = 300.0
    query_timeout_seconds: float = 10.0
    query_retry_max_attempts: int = 3
    query_retry_base_delay_seconds: float = 0.2
    query_retry_max_delay_seconds: float = 2.0
    query_retry_jitter_ratio: float = 0.2
    significant_difference_ratio: float = 0.1

    operation_kinds: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [kind.value for kind in OperationKind]
    )
    operation_poll_interval_seconds: float = 2.0
    operation_checkpoint_debounce_seconds: float = 1.0
    operation_recovery_ttl_seconds: float = 3600.0
    operation_max_consecutive_poll_failures: int = 5
    operation_verify_with_server: bool = True

    storage_backend: StorageBackend = StorageBackend.IN_MEMORY
    storage_file_path: str | None = None
    storage_file_max_bytes: int = 64 * 1024
    postgres_dsn: str | None = None
    postgres_pool_min_size: int = 1
    postgres_pool_max_size: int = 4

    operation_events_mqtt_enabled: bool = False
    operation_events_mqtt_host: str | None = None
    operation_events_mqtt_port: int = 1883
    operation_events_mqtt_username: str | None = None
    operation_events_mqtt_password: str | None = None
    operation_events_mqtt_topic_prefix: str = "embedded/runtime"
    operation_events_mqtt_qos: int = 0

    @field_validator("readiness_required_globals", "operation_kinds", mode="before")
    @classmethod
    def parse_csv_list(cls, value: object) -> object:
        """Support comma-separated env var values in addition to JSON arrays."""

        if not isinstance(value, str):
            return value
        stripped = value.strip()
        if stripped.startswith("["):
            return json.loads(stripped)
        return [item.strip() for item in stripped.split(",") if item.strip()]

    @model_validator(mode="after")
    def validate_runtime_settings(self) -> "Settings":
        """Ensure backend-specific and timing settings are valid."""

        if self.storage_backend == StorageBackend.FILE and not self.storage_file_path:
            raise ValueError(
                "EHR_STORAGE_FILE_PATH is required when EHR_STORAGE_BACKEND=file."
            )
        if self.storage_file_max_bytes < 1024:
            raise ValueError("EHR_STORAGE_FILE_MAX_BYTES must be >= 1024.")
        if self.storage_backend == StorageBackend.POSTGRES and not self.postgres_dsn:
            raise ValueError("EHR_POSTGRES_DSN is required when EHR_STORAGE_BACKEND=postgres.")
        if self.postgres_pool_min_size < 1:
            raise ValueError("EHR_POSTGRES_POOL_MIN_SIZE must be >= 1.")
        if self.postgres_pool_max_size < self.postgres_pool_min_size:
            raise ValueError("EHR_POSTGRES_POOL_MAX_SIZE must be >= EHR_POSTGRES_POOL_MIN_SIZE.")
        if self.operation_events_mqtt_enabled and not self.operation_events_mqtt_host:
            raise ValueError(
                "EHR_OPERATION_EVENTS_MQTT_HOST is required when "
                "EHR_OPERATION_EVENTS_MQTT_ENABLED=true."
            )
        if self.operation_events_mqtt_port < 1:
            raise ValueError("EHR_OPERATION_EVENTS_MQTT_PORT must be >= 1.")
        if self.operation_events_mqtt_qos not in {0, 1, 2}:
            raise ValueError("EHR_OPERATION_EVENTS_MQTT_QOS must be one of 0, 1, 2.")
        if self.backend_timeout_seconds <= 0:
            raise ValueError("EHR_BACKEND_TIMEOUT_SECONDS must be > 0.")
        if self.readiness_poll_interval_seconds <= 0:
            raise ValueError("EHR_READINESS_POLL_INTERVAL_SECONDS must be > 0.")
        if self.readiness_max_attempts < 1:
            raise ValueError("EHR_READINESS_MAX_ATTEMPTS must be >= 1.")
        if self.query_timeout_seconds <= 0:
            raise ValueError("EHR_QUERY_TIMEOUT_SECONDS must be > 0.")
        if self.query_retry_max_attempts < 1:
            raise ValueError("EHR_QUERY_RETRY_MAX_ATTEMPTS must be >= 1.")
        if self.query_evict_after_seconds < self.query_stale_after_seconds:
            raise ValueError(
                "EHR_QUERY_EVICT_AFTER_SECONDS must be >= EHR_QUERY_STALE_AFTER_SECONDS."
            )
        unknown_kinds = set(self.operation_kinds) - {kind.value for kind in OperationKind}
        if unknown_kinds:
            raise ValueError(
                "EHR_OPERATION_KINDS contains unknown kinds: "
                f"{', '.join(sorted(unknown_kinds))}."
            )
        if self.operation_poll_interval_seconds <= 0:
            raise ValueError("EHR_OPERATION_POLL_INTERVAL_SECONDS must be > 0.")
        if self.operation_recovery_ttl_seconds <= 0:
            raise ValueError("EHR_OPERATION_RECOVERY_TTL_SECONDS must be > 0.")
        if self.operation_checkpoint_debounce_seconds > self.operation_recovery_ttl_seconds:
            raise ValueError(
                "EHR_OPERATION_CHECKPOINT_DEBOUNCE_SECONDS must be <= "
                "EHR_OPERATION_RECOVERY_TTL_SECONDS."
            )
        if self.operation_max_consecutive_poll_failures < 1:
            raise ValueError("EHR_OPERATION_MAX_CONSECUTIVE_POLL_FAILURES must be >= 1.")
        return self

    model_config = SettingsConfigDict(env_prefix="EHR_", extra="ignore")


__all__ = ["Settings", "StorageBackend"]
