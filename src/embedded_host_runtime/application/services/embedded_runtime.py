"""Embedded runtime lifecycle: readiness-gated boot plus operation recovery."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any

from embedded_host_runtime.application.services.hybrid_data_coordinator import (
    HybridDataCoordinator,
)
from embedded_host_runtime.application.services.operation_tracker import OperationTracker
from embedded_host_runtime.application.services.readiness_gate import ReadinessGate
from embedded_host_runtime.domain.errors import (
    InvalidOperationStateError,
    OperationAlreadyTrackedError,
)
from embedded_host_runtime.domain.operations import (
    ACTIVE_OPERATION_STATES,
    OperationSnapshot,
    OperationState,
    RecoveryOffer,
)
from embedded_host_runtime.domain.ports import (
    HostRegistry,
    OperationEventPublisher,
    OperationLauncher,
    OperationRecordStore,
)
from embedded_host_runtime.domain.readiness import ReadinessOutcome

logger = logging.getLogger(__name__)

_BUSY_STATES = ACTIVE_OPERATION_STATES | {OperationState.STARTING}


class EmbeddedRuntime:
    """Owns the readiness gate, data coordinator and operation tracker."""

    def __init__(
        self,
        registry: HostRegistry,
        readiness_gate: ReadinessGate,
        coordinator: HybridDataCoordinator,
        tracker: OperationTracker,
        store: OperationRecordStore,
        event_publisher: OperationEventPublisher,
        launcher: OperationLauncher | None = None,
    ) -> None:
        self.registry = registry
        self.readiness_gate = readiness_gate
        self.coordinator = coordinator
        self.tracker = tracker
        self._store = store
        self._event_publisher = event_publisher
        self._launcher = launcher
        self._boot_task: asyncio.Task[ReadinessOutcome] | None = None
        self._recovery_offers: list[RecoveryOffer] = []
        self._start_locks: dict[str, asyncio.Lock] = {}
        self._unsubscribe_publisher = tracker.subscribe(event_publisher.publish_state)

    @property
    def readiness_outcome(self) -> ReadinessOutcome | None:
        """Return the readiness outcome once boot resolved it."""

        return self.readiness_gate.outcome

    @property
    def recovery_offers(self) -> list[RecoveryOffer]:
        """Return offers found during boot that are still pending."""

        return [
            offer
            for offer in self._recovery_offers
            if self.tracker.recovery_offer(offer.kind) == offer
        ]

    @property
    def booted(self) -> bool:
        """Return whether the boot sequence completed."""

        task = self._boot_task
        return task is not None and task.done() and not task.cancelled()

    async def startup(self) -> None:
        """Start the boot sequence in the background."""

        task = self._boot_task
        if task is not None and not task.done():
            return
        self._boot_task = asyncio.create_task(self._boot(), name="embedded-runtime-boot")

    async def wait_booted(self) -> ReadinessOutcome:
        """Await readiness and the initial recovery check."""

        if self._boot_task is None:
            await self.startup()
        assert self._boot_task is not None
        return await asyncio.shield(self._boot_task)

    async def start_operation(
        self,
        kind: str,
        parameters: dict[str, Any] | None = None,
    ) -> OperationSnapshot:
        """Initiate an operation on the backend and track it.

        Starts for the same kind are serialized, so a second caller sees the
        first operation as tracked instead of launching a duplicate.
        """

        launcher = self._require_launcher()
        self.tracker.current_state(kind)
        lock = self._start_locks.setdefault(kind, asyncio.Lock())
        async with lock:
            current = self.tracker.current_state(kind)
            if current.state in _BUSY_STATES:
                raise OperationAlreadyTrackedError(
                    f"Already tracking a '{kind}' operation "
                    f"({current.state.value}); resume or cancel it first."
                )
            initiation = await launcher.start_operation(kind, parameters)
            return await self.tracker.start(kind, initiation)

    async def resume_operation(self, kind: str) -> OperationSnapshot:
        """Resume the pending recovery offer for a kind."""

        offer = self.tracker.recovery_offer(kind)
        if offer is None:
            raise InvalidOperationStateError(f"No recoverable '{kind}' operation.")
        return await self.tracker.resume(offer)

    async def cancel_on_server(self, kind: str) -> OperationSnapshot:
        """Ask the backend to cancel; tracking continues until the terminal status."""

        launcher = self._require_launcher()
        snapshot = self.tracker.current_state(kind)
        if snapshot.operation_id is None or snapshot.state not in ACTIVE_OPERATION_STATES:
            raise InvalidOperationStateError(f"No active '{kind}' operation to cancel.")
        await launcher.cancel_operation(snapshot.operation_id)
        logger.info(
            "Requested server cancellation of '%s' operation '%s'.",
            kind,
            snapshot.operation_id,
        )
        return snapshot

    async def shutdown(self) -> None:
        """Stop background work and release adapters."""

        task = self._boot_task
        self._boot_task = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self.readiness_gate.close()
        await self.tracker.close()
        await self.coordinator.close()
        self._unsubscribe_publisher()
        await self._event_publisher.close()
        await self._store.close()

    async def _boot(self) -> ReadinessOutcome:
        outcome, offers = await asyncio.gather(
            self.readiness_gate.wait(),
            self._check_recovery(),
        )
        self._recovery_offers = offers
        context = self.coordinator.capture_host_snapshot()
        logger.info(
            "Embedded runtime booted (%s, context %s, %s recovery offer(s)).",
            outcome.status.value,
            context.provenance.value,
            len(offers),
        )
        return outcome

    async def _check_recovery(self) -> list[RecoveryOffer]:
        try:
            return await self.tracker.check_for_recoverable()
        except Exception:
            logger.exception("Operation recovery check failed; starting fresh.")
            return []

    def _require_launcher(self) -> OperationLauncher:
        if self._launcher is None:
            raise InvalidOperationStateError("No operation launcher is configured.")
        return self._launcher


__all__ = ["EmbeddedRuntime"]
