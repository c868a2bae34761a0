"""Resumable tracking of long-running server-side operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime

from embedded_host_runtime.domain.errors import (
    BackendError,
    CorruptOperationRecordError,
    InvalidOperationStateError,
    OperationAlreadyTrackedError,
    StorageUnavailableError,
    UnsupportedOperationKindError,
)
from embedded_host_runtime.domain.operations import (
    ACTIVE_OPERATION_STATES,
    OPERATION_RECORD_SCHEMA_VERSION,
    TERMINAL_REMOTE_STATUSES,
    OperationInitiation,
    OperationKind,
    OperationRecord,
    OperationSnapshot,
    OperationState,
    RecoveryOffer,
    RemoteOperationStatus,
    StatusPollResult,
    clamp_progress,
)
from embedded_host_runtime.domain.ports import OperationRecordStore, StatusPollEndpoint

logger = logging.getLogger(__name__)

OperationListener = Callable[[OperationSnapshot], Awaitable[None]]
SleepFunction = Callable[[float], Awaitable[None]]

_BUSY_STATES = ACTIVE_OPERATION_STATES | {OperationState.STARTING}


@dataclass(slots=True)
class _TrackedOperation:
    kind: str
    state: OperationState = OperationState.IDLE
    record: OperationRecord | None = None
    status: RemoteOperationStatus | None = None
    progress_fraction: float = 0.0
    error: str | None = None
    offer: RecoveryOffer | None = None
    poll_task: asyncio.Task[None] | None = None
    checkpoint_task: asyncio.Task[None] | None = None
    pending_record: OperationRecord | None = None
    generation: int = 0
    written_generation: int = 0
    consecutive_failures: int = 0
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def reset(self) -> None:
        self.state = OperationState.IDLE
        self.record = None
        self.status = None
        self.progress_fraction = 0.0
        self.error = None
        self.offer = None
        self.consecutive_failures = 0


class OperationTracker:
    """Track one active operation per kind and survive process reloads.

    Every status update is checkpointed to durable storage (debounced and
    serialized per kind). After a reload, `check_for_recoverable` offers the
    operations whose records are still valid; `resume` continues polling the
    same server-side operation instead of starting a new one.
    """

    def __init__(
        self,
        store: OperationRecordStore,
        poll_endpoint: StatusPollEndpoint,
        *,
        supported_kinds: Iterable[str] | None = None,
        poll_interval_seconds: float = 2.0,
        checkpoint_debounce_seconds: float = 1.0,
        recovery_ttl_seconds: float = 3600.0,
        max_consecutive_poll_failures: int = 5,
        verify_with_server: bool = True,
        sleep: SleepFunction = asyncio.sleep,
    ) -> None:
        kinds = supported_kinds if supported_kinds is not None else list(OperationKind)
        self._supported_kinds = frozenset(str(kind) for kind in kinds)
        self._store = store
        self._poll_endpoint = poll_endpoint
        self._poll_interval_seconds = max(poll_interval_seconds, 0.0)
        self._checkpoint_debounce_seconds = max(checkpoint_debounce_seconds, 0.0)
        self._recovery_ttl_seconds = recovery_ttl_seconds
        self._max_consecutive_poll_failures = max(max_consecutive_poll_failures, 1)
        self._verify_with_server = verify_with_server
        self._sleep = sleep
        self._operations: dict[str, _TrackedOperation] = {}
        self._listeners: list[OperationListener] = []
        self._persistence_degraded = False

    @property
    def supported_kinds(self) -> frozenset[str]:
        """Return the operation kinds this tracker accepts."""

        return self._supported_kinds

    @property
    def persistence_degraded(self) -> bool:
        """Return whether durable storage failed and tracking is memory-only."""

        return self._persistence_degraded

    async def start(self, kind: str, initiation: OperationInitiation) -> OperationSnapshot:
        """Begin tracking a freshly initiated operation."""

        self._require_supported(kind)
        tracked = self._tracked(kind)
        if tracked.state in _BUSY_STATES:
            raise OperationAlreadyTrackedError(
                f"Already tracking a '{kind}' operation "
                f"({tracked.state.value}); resume or cancel it first."
            )

        tracked.reset()
        tracked.state = OperationState.STARTING
        tracked.status = initiation.status
        tracked.progress_fraction = clamp_progress(initiation.progress_fraction)
        record = OperationRecord.new(
            operation_id=initiation.operation_id,
            kind=kind,
            status=initiation.status,
            progress_fraction=initiation.progress_fraction,
            ttl_seconds=self._recovery_ttl_seconds,
        )
        tracked.record = record
        await self._publish(tracked)

        if initiation.status in TERMINAL_REMOTE_STATUSES:
            tracked.state = TERMINAL_REMOTE_STATUSES[initiation.status]
            tracked.error = initiation.message
            await self._publish(tracked)
            return self._snapshot(tracked)
        if initiation.status is RemoteOperationStatus.NOT_FOUND:
            tracked.state = OperationState.FAILED
            tracked.error = "Operation was not accepted by the server."
            await self._publish(tracked)
            return self._snapshot(tracked)

        await self._persist_now(tracked, record)
        tracked.state = OperationState.POLLING
        self._start_polling(tracked, resuming=False)
        logger.info("Tracking '%s' operation '%s'.", kind, initiation.operation_id)
        await self._publish(tracked)
        return self._snapshot(tracked)

    async def check_for_recoverable(self, kind: str | None = None) -> list[RecoveryOffer]:
        """Validate stored records and offer the ones that can be resumed."""

        if kind is not None:
            self._require_supported(kind)
            kinds = [kind]
        elif self._persistence_degraded:
            return []
        else:
            try:
                kinds = await self._store.list_kinds()
            except CorruptOperationRecordError as exc:
                logger.warning("Discarding unreadable operation records: %s", exc)
                await self._clear_stored()
                return []
            except StorageUnavailableError as exc:
                self._degrade(exc)
                return []

        offers: list[RecoveryOffer] = []
        for stored_kind in kinds:
            offer = await self._recover_kind(stored_kind)
            if offer is not None:
                offers.append(offer)
        return offers

    def recovery_offer(self, kind: str) -> RecoveryOffer | None:
        """Return the pending recovery offer for a kind, if any."""

        tracked = self._operations.get(kind)
        if tracked is None or tracked.state is not OperationState.RECOVERY_CHECK:
            return None
        return tracked.offer

    async def resume(self, offer: RecoveryOffer) -> OperationSnapshot:
        """Continue polling a recovered operation with its original id."""

        self._require_supported(offer.kind)
        tracked = self._tracked(offer.kind)
        if tracked.state is OperationState.POLLING:
            raise OperationAlreadyTrackedError(
                f"Already tracking a '{offer.kind}' operation."
            )
        if (
            tracked.state is not OperationState.RECOVERY_CHECK
            or tracked.record is None
            or tracked.record.operation_id != offer.operation_id
        ):
            raise InvalidOperationStateError(
                f"No recoverable '{offer.kind}' operation '{offer.operation_id}'."
            )

        tracked.state = OperationState.POLLING
        tracked.offer = None
        self._start_polling(tracked, resuming=True)
        logger.info("Resumed tracking '%s' operation '%s'.", offer.kind, offer.operation_id)
        await self._publish(tracked)
        return self._snapshot(tracked)

    async def cancel_tracking(self, kind: str) -> OperationSnapshot:
        """Stop tracking locally; server-side execution is not cancelled."""

        self._require_supported(kind)
        tracked = self._tracked(kind)
        if tracked.state not in ACTIVE_OPERATION_STATES:
            raise InvalidOperationStateError(
                f"No active '{kind}' operation to stop tracking ({tracked.state.value})."
            )

        operation_id = tracked.record.operation_id if tracked.record is not None else None
        await self._stop_polling(tracked)
        await self._discard_record(tracked, operation_id)
        tracked.reset()
        logger.info("Stopped tracking '%s' operation '%s'.", kind, operation_id)
        await self._publish(tracked)
        return self._snapshot(tracked)

    def current_state(self, kind: str) -> OperationSnapshot:
        """Return the observable state for one kind."""

        self._require_supported(kind)
        return self._snapshot(self._tracked(kind))

    def snapshots(self) -> list[OperationSnapshot]:
        """Return snapshots for every supported kind."""

        return [self._snapshot(self._tracked(kind)) for kind in sorted(self._supported_kinds)]

    def subscribe(self, listener: OperationListener) -> Callable[[], None]:
        """Register a state listener; returns the unsubscribe callable."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            with suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    async def close(self) -> None:
        """Stop polling and flush pending checkpoints; records are kept."""

        for tracked in list(self._operations.values()):
            await self._stop_polling(tracked)
        for tracked in list(self._operations.values()):
            await self._cancel_checkpoint_task(tracked)
            await self._flush_checkpoint(tracked)
        self._listeners.clear()

    async def _recover_kind(self, kind: str) -> RecoveryOffer | None:
        tracked = self._operations.get(kind)
        if tracked is not None and tracked.state in _BUSY_STATES:
            return tracked.offer if tracked.state is OperationState.RECOVERY_CHECK else None

        try:
            record = await self._store.get_record(kind)
        except CorruptOperationRecordError as exc:
            logger.warning("Discarding corrupt '%s' operation record: %s", kind, exc)
            await self._delete_stored(kind)
            return None
        except StorageUnavailableError as exc:
            self._degrade(exc)
            return None
        if record is None:
            return None

        reason = self._invalid_record_reason(kind, record)
        if reason is not None:
            logger.warning("Discarding '%s' operation record: %s.", kind, reason)
            await self._delete_stored(kind, record.operation_id)
            return None

        status = record.last_known_status
        progress_fraction = record.last_known_progress_fraction
        if self._verify_with_server:
            observed = await self._server_status(record)
            if observed is not None:
                if observed.status is RemoteOperationStatus.NOT_FOUND or observed.terminal:
                    logger.info(
                        "Discarding '%s' operation record '%s'; server reports %s.",
                        kind,
                        record.operation_id,
                        observed.status.value,
                    )
                    await self._delete_stored(kind, record.operation_id)
                    return None
                status = observed.status
                progress_fraction = clamp_progress(observed.progress_fraction)

        now = datetime.now(tz=UTC)
        offer = RecoveryOffer(
            kind=kind,
            operation_id=record.operation_id,
            started_at=record.started_at,
            elapsed_seconds=max((now - record.started_at).total_seconds(), 0.0),
            last_known_status=status,
            last_known_progress_fraction=progress_fraction,
        )
        tracked = self._tracked(kind)
        tracked.reset()
        tracked.state = OperationState.RECOVERY_CHECK
        tracked.record = record
        tracked.status = status
        tracked.progress_fraction = progress_fraction
        tracked.offer = offer
        logger.info("Offering recovery of '%s' operation '%s'.", kind, record.operation_id)
        await self._publish(tracked)
        return offer

    def _invalid_record_reason(self, kind: str, record: OperationRecord) -> str | None:
        if kind not in self._supported_kinds:
            return "unrecognized operation kind"
        if record.kind != kind:
            return f"record kind '{record.kind}' does not match its slot"
        if record.schema_version != OPERATION_RECORD_SCHEMA_VERSION:
            return f"incompatible schema version {record.schema_version}"
        if record.is_expired():
            return "recovery window expired"
        return None

    async def _server_status(self, record: OperationRecord) -> StatusPollResult | None:
        try:
            return await self._poll_endpoint.poll_status(record.operation_id)
        except BackendError as exc:
            logger.info(
                "Could not verify '%s' operation '%s' with the server; offering anyway: %s",
                record.kind,
                record.operation_id,
                exc,
            )
            return None

    def _start_polling(self, tracked: _TrackedOperation, *, resuming: bool) -> None:
        assert tracked.record is not None
        tracked.consecutive_failures = 0
        tracked.poll_task = asyncio.create_task(
            self._run_poll_loop(tracked, tracked.record.operation_id, resuming=resuming),
            name=f"operation-poll-{tracked.kind}",
        )

    async def _run_poll_loop(
        self,
        tracked: _TrackedOperation,
        operation_id: str,
        *,
        resuming: bool,
    ) -> None:
        delay = 0.0 if resuming else self._poll_interval_seconds
        try:
            while tracked.state is OperationState.POLLING:
                await self._sleep(delay)
                delay = self._poll_interval_seconds
                finished = await self._poll_once(tracked, operation_id, resuming=resuming)
                if finished:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Polling loop for '%s' operation failed.", tracked.kind)
            await self._give_up(tracked, f"Polling failed: {exc}")
        finally:
            if tracked.poll_task is asyncio.current_task():
                tracked.poll_task = None

    async def _poll_once(
        self,
        tracked: _TrackedOperation,
        operation_id: str,
        *,
        resuming: bool,
    ) -> bool:
        try:
            result = await self._poll_endpoint.poll_status(operation_id)
        except BackendError as exc:
            if not exc.retryable:
                await self._give_up(tracked, f"{exc.category.value}: {exc}")
                return True
            tracked.consecutive_failures += 1
            if tracked.consecutive_failures >= self._max_consecutive_poll_failures:
                await self._give_up(
                    tracked,
                    f"Status endpoint unreachable after "
                    f"{tracked.consecutive_failures} consecutive failures: {exc}",
                )
                return True
            logger.warning(
                "Status poll for '%s' operation '%s' failed (%s/%s): %s",
                tracked.kind,
                operation_id,
                tracked.consecutive_failures,
                self._max_consecutive_poll_failures,
                exc,
            )
            return False

        tracked.consecutive_failures = 0
        if result.status is RemoteOperationStatus.NOT_FOUND:
            await self._discard_record(tracked, operation_id)
            if resuming:
                logger.info(
                    "Recovered '%s' operation '%s' is unknown to the server; starting fresh.",
                    tracked.kind,
                    operation_id,
                )
                tracked.reset()
            else:
                tracked.state = OperationState.FAILED
                tracked.status = result.status
                tracked.error = result.message or "Operation not found on the server."
            await self._publish(tracked)
            return True

        assert tracked.record is not None
        tracked.status = result.status
        tracked.progress_fraction = clamp_progress(result.progress_fraction)
        record = tracked.record.checkpoint(
            status=result.status,
            progress_fraction=tracked.progress_fraction,
            ttl_seconds=self._recovery_ttl_seconds,
        )
        tracked.record = record

        if result.terminal:
            tracked.state = TERMINAL_REMOTE_STATUSES[result.status]
            if tracked.state is OperationState.FAILED:
                tracked.error = result.message
            await self._discard_record(tracked, operation_id)
            logger.info(
                "'%s' operation '%s' finished with %s.",
                tracked.kind,
                operation_id,
                tracked.state.value,
            )
            await self._publish(tracked)
            return True

        self._schedule_checkpoint(tracked, record)
        await self._publish(tracked)
        return False

    async def _give_up(self, tracked: _TrackedOperation, reason: str) -> None:
        tracked.state = OperationState.UNKNOWN
        tracked.error = reason
        logger.warning(
            "Stopped polling '%s' operation; outcome unknown: %s",
            tracked.kind,
            reason,
        )
        await self._cancel_checkpoint_task(tracked)
        await self._flush_checkpoint(tracked)
        await self._publish(tracked)

    async def _stop_polling(self, tracked: _TrackedOperation) -> None:
        task = tracked.poll_task
        if task is None or task is asyncio.current_task():
            return
        tracked.poll_task = None
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    def _schedule_checkpoint(self, tracked: _TrackedOperation, record: OperationRecord) -> None:
        tracked.generation += 1
        tracked.pending_record = record
        task = tracked.checkpoint_task
        if task is not None and not task.done():
            return
        tracked.checkpoint_task = asyncio.create_task(
            self._run_debounced_checkpoint(tracked),
            name=f"operation-checkpoint-{tracked.kind}",
        )

    async def _run_debounced_checkpoint(self, tracked: _TrackedOperation) -> None:
        try:
            await self._sleep(self._checkpoint_debounce_seconds)
            # Only the debounce wait is cancellable; a started write runs to completion.
            flush = asyncio.ensure_future(self._flush_checkpoint(tracked))
            try:
                await asyncio.shield(flush)
            except asyncio.CancelledError:
                await asyncio.wait([flush])
                raise
        finally:
            if tracked.checkpoint_task is asyncio.current_task():
                tracked.checkpoint_task = None

    async def _flush_checkpoint(self, tracked: _TrackedOperation) -> None:
        async with tracked.write_lock:
            record = tracked.pending_record
            generation = tracked.generation
            if record is None or generation <= tracked.written_generation:
                return
            tracked.pending_record = None
            await self._write(tracked, record, generation)

    async def _persist_now(self, tracked: _TrackedOperation, record: OperationRecord) -> None:
        tracked.generation += 1
        generation = tracked.generation
        tracked.pending_record = None
        async with tracked.write_lock:
            if generation > tracked.written_generation:
                await self._write(tracked, record, generation)

    async def _write(
        self,
        tracked: _TrackedOperation,
        record: OperationRecord,
        generation: int,
    ) -> None:
        tracked.written_generation = generation
        if self._persistence_degraded:
            return
        try:
            stored = await self._store.put_record(record)
        except StorageUnavailableError as exc:
            self._degrade(exc)
            return
        if not stored:
            logger.info(
                "Skipped '%s' checkpoint; storage holds a newer record.",
                tracked.kind,
            )

    async def _discard_record(self, tracked: _TrackedOperation, operation_id: str | None) -> None:
        await self._cancel_checkpoint_task(tracked)
        async with tracked.write_lock:
            tracked.pending_record = None
            tracked.generation += 1
            tracked.written_generation = tracked.generation
            await self._delete_stored(tracked.kind, operation_id)

    async def _cancel_checkpoint_task(self, tracked: _TrackedOperation) -> None:
        task = tracked.checkpoint_task
        if task is None or task is asyncio.current_task():
            return
        tracked.checkpoint_task = None
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _delete_stored(self, kind: str, operation_id: str | None = None) -> None:
        if self._persistence_degraded:
            return
        try:
            await self._store.delete_record(kind, operation_id)
        except StorageUnavailableError as exc:
            self._degrade(exc)

    async def _clear_stored(self) -> None:
        try:
            await self._store.clear()
        except StorageUnavailableError as exc:
            self._degrade(exc)

    def _degrade(self, error: StorageUnavailableError) -> None:
        if not self._persistence_degraded:
            logger.warning(
                "Operation record storage unavailable; tracking in memory only: %s",
                error,
            )
        self._persistence_degraded = True

    def _require_supported(self, kind: str) -> None:
        if kind not in self._supported_kinds:
            raise UnsupportedOperationKindError(f"Unsupported operation kind '{kind}'.")

    def _tracked(self, kind: str) -> _TrackedOperation:
        tracked = self._operations.get(kind)
        if tracked is None:
            tracked = _TrackedOperation(kind=kind)
            self._operations[kind] = tracked
        return tracked

    def _snapshot(self, tracked: _TrackedOperation) -> OperationSnapshot:
        return OperationSnapshot(
            kind=tracked.kind,
            state=tracked.state,
            operation_id=tracked.record.operation_id if tracked.record is not None else None,
            status=tracked.status,
            progress_fraction=tracked.progress_fraction,
            error=tracked.error,
            persistence_degraded=self._persistence_degraded,
        )

    async def _publish(self, tracked: _TrackedOperation) -> None:
        snapshot = self._snapshot(tracked)
        for listener in list(self._listeners):
            try:
                await listener(snapshot)
            except Exception:
                logger.exception("Operation state listener failed for '%s'.", tracked.kind)


__all__ = ["OperationListener", "OperationTracker"]
