"""No-op operation event publisher."""

from __future__ import annotations

from embedded_host_runtime.domain.operations import OperationSnapshot
from embedded_host_runtime.domain.ports import OperationEventPublisher


class NoopOperationEventPublisher(OperationEventPublisher):
    """No-op implementation for environments without event streaming."""

    async def publish_state(self, snapshot: OperationSnapshot) -> None:
        _ = snapshot

    async def close(self) -> None:
        return None


__all__ = ["NoopOperationEventPublisher"]
