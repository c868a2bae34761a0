"""Response and request models for the runtime HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from embedded_host_runtime.domain.host_context import DataTier
from embedded_host_runtime.domain.operations import (
    OperationSnapshot,
    OperationState,
    RecoveryOffer,
    RemoteOperationStatus,
)
from embedded_host_runtime.domain.queries import QueryStateSnapshot, ServedValue
from embedded_host_runtime.domain.readiness import ReadinessStatus


class RuntimeModel(BaseModel):
    """Base model for runtime routes."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class RecoveryOfferResponse(RuntimeModel):
    """Recoverable operation offered after a reload."""

    kind: str
    operation_id: str = Field(alias="operationId")
    started_at: datetime = Field(alias="startedAt")
    elapsed_seconds: float = Field(alias="elapsedSeconds")
    last_known_status: RemoteOperationStatus = Field(alias="lastKnownStatus")
    last_known_progress_fraction: float = Field(alias="lastKnownProgressFraction")

    @classmethod
    def from_offer(cls, offer: RecoveryOffer) -> RecoveryOfferResponse:
        return cls(
            kind=offer.kind,
            operation_id=offer.operation_id,
            started_at=offer.started_at,
            elapsed_seconds=round(offer.elapsed_seconds, 3),
            last_known_status=offer.last_known_status,
            last_known_progress_fraction=offer.last_known_progress_fraction,
        )


class ReadinessResponse(RuntimeModel):
    """Readiness gate status."""

    status: ReadinessStatus
    attempts: int
    missing_signals: list[str] = Field(default_factory=list, alias="missingSignals")
    degraded: bool = False
    booted: bool = False
    recovery_offers: list[RecoveryOfferResponse] = Field(
        default_factory=list, alias="recoveryOffers"
    )


class HostGlobalResponse(RuntimeModel):
    """Acknowledgement of one host-side injection."""

    name: str
    defined: bool


class DynamicQueryResponse(RuntimeModel):
    """Dynamic query result plus cache indicators."""

    key: str
    items: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    fetched_at: datetime | None = Field(default=None, alias="fetchedAt")
    tier: DataTier = DataTier.DYNAMIC
    is_stale: bool = Field(default=True, alias="isStale")
    is_fetching: bool = Field(default=False, alias="isFetching")
    last_error: str | None = Field(default=None, alias="lastError")

    @classmethod
    def from_state(cls, state: QueryStateSnapshot) -> DynamicQueryResponse:
        result = state.result
        return cls(
            key=state.key,
            items=list(result.items) if result is not None else [],
            total=result.total if result is not None else 0,
            fetched_at=result.fetched_at if result is not None else None,
            is_stale=state.is_stale,
            is_fetching=state.is_fetching,
            last_error=state.last_error,
        )


class InvalidateRequest(RuntimeModel):
    """Invalidate by exact cache key or by record type."""

    key: str | None = None
    record_type: str | None = Field(
        default=None,
        alias="recordType",
        validation_alias=AliasChoices("recordType", "record_type"),
    )

    @model_validator(mode="after")
    def require_target(self) -> InvalidateRequest:
        if not self.key and not self.record_type:
            raise ValueError("Either key or recordType is required.")
        return self


class InvalidateResponse(RuntimeModel):
    """Number of cache entries marked stale."""

    invalidated: int


class ServedValueResponse(RuntimeModel):
    """Fact value with serving tier."""

    name: str
    value: Any = None
    tier: DataTier
    as_of: datetime | None = Field(default=None, alias="asOf")
    alternatives: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_served(cls, served: ServedValue) -> ServedValueResponse:
        return cls(
            name=served.name,
            value=served.value,
            tier=served.tier,
            as_of=served.as_of,
            alternatives=dict(served.alternatives),
        )


class OperationStartRequest(RuntimeModel):
    """Parameters forwarded to the backend when starting an operation."""

    parameters: dict[str, Any] = Field(default_factory=dict)


class OperationStateResponse(RuntimeModel):
    """Observable tracking state for one kind."""

    kind: str
    state: OperationState
    operation_id: str | None = Field(default=None, alias="operationId")
    status: RemoteOperationStatus | None = None
    progress_fraction: float = Field(default=0.0, alias="progressFraction")
    percent_complete: float = Field(default=0.0, alias="percentComplete")
    error: str | None = None
    persistence_degraded: bool = Field(default=False, alias="persistenceDegraded")

    @classmethod
    def from_snapshot(cls, snapshot: OperationSnapshot) -> OperationStateResponse:
        return cls(
            kind=snapshot.kind,
            state=snapshot.state,
            operation_id=snapshot.operation_id,
            status=snapshot.status,
            progress_fraction=snapshot.progress_fraction,
            percent_complete=snapshot.percent_complete,
            error=snapshot.error,
            persistence_degraded=snapshot.persistence_degraded,
        )


__all__ = [
    "DynamicQueryResponse",
    "HostGlobalResponse",
    "InvalidateRequest",
    "InvalidateResponse",
    "OperationStartRequest",
    "OperationStateResponse",
    "ReadinessResponse",
    "RecoveryOfferResponse",
    "RuntimeModel",
    "ServedValueResponse",
]
