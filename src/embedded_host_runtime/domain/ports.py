"""Ports for host state, backend collaborators, durable storage and events."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from embedded_host_runtime.domain.operations import (
    OperationInitiation,
    OperationRecord,
    OperationSnapshot,
    StatusPollResult,
)
from embedded_host_runtime.domain.queries import QueryDescriptor, QueryPage


class HostRegistry(Protocol):
    """Read side of the host-injected global registry."""

    def get(self, name: str, default: Any = None) -> Any:
        """Return one injected value."""

    def contains(self, name: str) -> bool:
        """Return whether the host defined a value."""

    @property
    def loaded(self) -> bool:
        """Return whether the host signalled load completion."""

    async def wait_loaded(self) -> None:
        """Block until the host signals load completion."""


class QueryEndpoint(Protocol):
    """Tier 3 record query collaborator."""

    async def fetch_records(self, query: QueryDescriptor) -> QueryPage:
        """Return one page of records for a query descriptor."""


class StatusPollEndpoint(Protocol):
    """Idempotent status-poll collaborator for long-running operations."""

    async def poll_status(self, operation_id: str) -> StatusPollResult:
        """Return current status; unknown ids yield RemoteOperationStatus.NOT_FOUND."""


@runtime_checkable
class OperationLauncher(Protocol):
    """Optional collaborator that initiates and cancels server-side operations."""

    async def start_operation(
        self,
        kind: str,
        parameters: dict[str, Any] | None = None,
    ) -> OperationInitiation:
        """Ask the backend to start a long-running operation."""

    async def cancel_operation(self, operation_id: str) -> None:
        """Ask the backend to cancel server-side execution."""


class OperationRecordStore(Protocol):
    """Durable key-value slot per operation kind."""

    async def get_record(self, kind: str) -> OperationRecord | None:
        """Return the stored record for a kind."""

    async def list_kinds(self) -> list[str]:
        """Return every kind that currently has a stored record."""

    async def put_record(self, record: OperationRecord) -> bool:
        """Store a record unless the stored copy has a newer checkpoint."""

    async def delete_record(self, kind: str, operation_id: str | None = None) -> None:
        """Delete a record; when operation_id is given, only if it still matches."""

    async def clear(self) -> None:
        """Drop every stored record, including unreadable ones."""

    async def close(self) -> None:
        """Release storage resources."""


class OperationEventPublisher(Protocol):
    """Outbound publisher for operation tracking state changes."""

    async def publish_state(self, snapshot: OperationSnapshot) -> None:
        """Publish one state snapshot."""

    async def close(self) -> None:
        """Release publisher resources."""


__all__ = [
    "HostRegistry",
    "OperationEventPublisher",
    "OperationLauncher",
    "OperationRecordStore",
    "QueryEndpoint",
    "StatusPollEndpoint",
]
