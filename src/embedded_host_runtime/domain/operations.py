"""Long-running operation tracking models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

OPERATION_RECORD_SCHEMA_VERSION = 1


class OperationKind(StrEnum):
    """Operation classes this build knows how to track."""

    INSTALL = "install"
    UPDATE = "update"
    UNINSTALL = "uninstall"
    REPAIR = "repair"


class OperationState(StrEnum):
    """Client-side tracking state for one operation kind."""

    IDLE = "IDLE"
    STARTING = "STARTING"
    POLLING = "POLLING"
    RECOVERY_CHECK = "RECOVERY_CHECK"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"


ACTIVE_OPERATION_STATES = frozenset({OperationState.POLLING, OperationState.RECOVERY_CHECK})


class RemoteOperationStatus(StrEnum):
    """Status reported by the status-poll endpoint."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


TERMINAL_REMOTE_STATUSES: dict[RemoteOperationStatus, OperationState] = {
    RemoteOperationStatus.SUCCEEDED: OperationState.SUCCEEDED,
    RemoteOperationStatus.FAILED: OperationState.FAILED,
    RemoteOperationStatus.CANCELLED: OperationState.CANCELLED,
}

_REMOTE_STATUS_ALIASES: dict[str, RemoteOperationStatus] = {
    "queued": RemoteOperationStatus.PENDING,
    "pending": RemoteOperationStatus.PENDING,
    "0": RemoteOperationStatus.PENDING,
    "running": RemoteOperationStatus.RUNNING,
    "in_progress": RemoteOperationStatus.RUNNING,
    "1": RemoteOperationStatus.RUNNING,
    "succeeded": RemoteOperationStatus.SUCCEEDED,
    "success": RemoteOperationStatus.SUCCEEDED,
    "complete": RemoteOperationStatus.SUCCEEDED,
    "completed": RemoteOperationStatus.SUCCEEDED,
    "2": RemoteOperationStatus.SUCCEEDED,
    "failed": RemoteOperationStatus.FAILED,
    "error": RemoteOperationStatus.FAILED,
    "3": RemoteOperationStatus.FAILED,
    "cancelled": RemoteOperationStatus.CANCELLED,
    "canceled": RemoteOperationStatus.CANCELLED,
    "4": RemoteOperationStatus.CANCELLED,
    "not_found": RemoteOperationStatus.NOT_FOUND,
}


def parse_remote_status(value: object) -> RemoteOperationStatus:
    """Normalize backend status spellings (names and numeric tracker codes)."""

    normalized = str(value).strip().lower().replace(" ", "_").replace("-", "_")
    status = _REMOTE_STATUS_ALIASES.get(normalized)
    if status is None:
        raise ValueError(f"Unrecognized operation status '{value}'.")
    return status


def clamp_progress(value: float | None) -> float:
    """Clamp a progress fraction into [0, 1]."""

    if value is None:
        return 0.0
    return max(0.0, min(1.0, float(value)))


class OperationRecord(BaseModel):
    """Checkpoint persisted to durable storage for one tracked operation."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    operation_id: str = Field(alias="operationId", min_length=1)
    kind: str = Field(min_length=1)
    started_at: datetime = Field(alias="startedAt")
    last_checkpoint_at: datetime = Field(alias="lastCheckpointAt")
    last_known_status: RemoteOperationStatus = Field(alias="lastKnownStatus")
    last_known_progress_fraction: float = Field(
        default=0.0, alias="lastKnownProgressFraction", ge=0.0, le=1.0
    )
    expires_at: datetime = Field(alias="expiresAt")
    schema_version: int = Field(alias="schemaVersion")

    @classmethod
    def new(
        cls,
        *,
        operation_id: str,
        kind: str,
        status: RemoteOperationStatus,
        progress_fraction: float,
        ttl_seconds: float,
        now: datetime | None = None,
    ) -> OperationRecord:
        """Create the first checkpoint for a freshly started operation."""

        timestamp = now or datetime.now(tz=UTC)
        return cls(
            operation_id=operation_id,
            kind=kind,
            started_at=timestamp,
            last_checkpoint_at=timestamp,
            last_known_status=status,
            last_known_progress_fraction=clamp_progress(progress_fraction),
            expires_at=timestamp + timedelta(seconds=ttl_seconds),
            schema_version=OPERATION_RECORD_SCHEMA_VERSION,
        )

    def checkpoint(
        self,
        *,
        status: RemoteOperationStatus,
        progress_fraction: float,
        ttl_seconds: float,
        now: datetime | None = None,
    ) -> OperationRecord:
        """Return a newer checkpoint; expiry slides with every checkpoint."""

        timestamp = now or datetime.now(tz=UTC)
        if timestamp <= self.last_checkpoint_at:
            timestamp = self.last_checkpoint_at + timedelta(microseconds=1)
        return self.model_copy(
            update={
                "last_checkpoint_at": timestamp,
                "last_known_status": status,
                "last_known_progress_fraction": clamp_progress(progress_fraction),
                "expires_at": timestamp + timedelta(seconds=ttl_seconds),
            }
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return whether the client-side recovery window has closed."""

        return (now or datetime.now(tz=UTC)) > self.expires_at

    def to_json(self) -> str:
        """Serialize with camelCase keys for durable storage."""

        return self.model_dump_json(by_alias=True)


@dataclass(slots=True, frozen=True)
class OperationInitiation:
    """Backend response to a request that started a long-running operation."""

    operation_id: str
    status: RemoteOperationStatus = RemoteOperationStatus.PENDING
    progress_fraction: float = 0.0
    message: str | None = None


@dataclass(slots=True, frozen=True)
class StatusPollResult:
    """One status-poll response."""

    status: RemoteOperationStatus
    progress_fraction: float = 0.0
    message: str | None = None

    @property
    def terminal(self) -> bool:
        """Return whether polling should stop."""

        return self.status in TERMINAL_REMOTE_STATUSES


@dataclass(slots=True, frozen=True)
class RecoveryOffer:
    """Validated, not-yet-resumed description of a previously tracked operation."""

    kind: str
    operation_id: str
    started_at: datetime
    elapsed_seconds: float
    last_known_status: RemoteOperationStatus
    last_known_progress_fraction: float


@dataclass(slots=True, frozen=True)
class OperationSnapshot:
    """Observable tracking state for one kind."""

    kind: str
    state: OperationState = OperationState.IDLE
    operation_id: str | None = None
    status: RemoteOperationStatus | None = None
    progress_fraction: float = 0.0
    error: str | None = None
    persistence_degraded: bool = False

    @property
    def percent_complete(self) -> float:
        """Return progress in percent."""

        return round(self.progress_fraction * 100, 2)


__all__ = [
    "ACTIVE_OPERATION_STATES",
    "OPERATION_RECORD_SCHEMA_VERSION",
    "OperationInitiation",
    "OperationKind",
    "OperationRecord",
    "OperationSnapshot",
    "OperationState",
    "RecoveryOffer",
    "RemoteOperationStatus",
    "StatusPollResult",
    "TERMINAL_REMOTE_STATUSES",
    "clamp_progress",
    "parse_remote_status",
]
