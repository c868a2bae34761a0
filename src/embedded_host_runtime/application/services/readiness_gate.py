"""Host readiness gate: poll named host-state predicates until ready or forced."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from contextlib import suppress

from embedded_host_runtime.domain.ports import HostRegistry
from embedded_host_runtime.domain.readiness import (
    ReadinessOptions,
    ReadinessOutcome,
    ReadinessSignal,
    ReadinessState,
    ReadinessStatus,
)

logger = logging.getLogger(__name__)

SleepFunction = Callable[[float], Awaitable[None]]


def global_defined(registry: HostRegistry, name: str) -> ReadinessSignal:
    """Signal that holds once the host defined a named value."""

    return ReadinessSignal(name=name, predicate=lambda: registry.contains(name))


def global_truthy(registry: HostRegistry, name: str) -> ReadinessSignal:
    """Signal that holds once a named host value is truthy."""

    return ReadinessSignal(name=name, predicate=lambda: bool(registry.get(name)))


class ReadinessGate:
    """Resolve exactly once to READY or FORCED; never raises for missing signals.

    The first check runs as soon as the gate is entered, so a gate that never
    sees its signals is forced after (max_attempts - 1) poll intervals, within
    the max_attempts * poll_interval ceiling. With a 50ms interval and three
    attempts that is about 100ms.
    """

    def __init__(
        self,
        signals: Iterable[ReadinessSignal],
        options: ReadinessOptions | None = None,
        registry: HostRegistry | None = None,
        sleep: SleepFunction = asyncio.sleep,
    ) -> None:
        self._options = options or ReadinessOptions()
        if self._options.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self._options.poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must be >= 0.")
        self._registry = registry
        self._sleep = sleep
        self._state = ReadinessState(required_signals=tuple(signals))
        self._outcome: ReadinessOutcome | None = None
        self._task: asyncio.Task[ReadinessOutcome] | None = None

    @property
    def state(self) -> ReadinessState:
        """Return live gate state."""

        return self._state

    @property
    def outcome(self) -> ReadinessOutcome | None:
        """Return the resolved outcome, if any."""

        return self._outcome

    async def wait(self) -> ReadinessOutcome:
        """Await the shared outcome; concurrent callers share one polling task."""

        if self._outcome is not None:
            return self._outcome
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="readiness-gate")
        return await asyncio.shield(self._task)

    async def close(self) -> None:
        """Stop polling if the gate has not resolved yet."""

        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> ReadinessOutcome:
        await self._enter()
        self._state.status = ReadinessStatus.POLLING
        missing: tuple[str, ...] = ()
        for attempt in range(1, self._options.max_attempts + 1):
            if attempt > 1:
                await self._sleep(self._options.poll_interval_seconds)
            self._state.attempts = attempt
            missing = self._missing_signals()
            self._state.missing_signals = missing
            if not missing:
                return self._resolve(ReadinessStatus.READY, attempt, ())

        logger.warning(
            "Host readiness forced after %s attempts; missing signals: %s.",
            self._options.max_attempts,
            ", ".join(missing),
        )
        return self._resolve(ReadinessStatus.FORCED, self._options.max_attempts, missing)

    async def _enter(self) -> None:
        registry = self._registry
        if registry is None or registry.loaded:
            if self._options.initial_delay_seconds > 0:
                await self._sleep(self._options.initial_delay_seconds)
            return

        try:
            await asyncio.wait_for(
                registry.wait_loaded(),
                timeout=self._options.ceiling_seconds,
            )
        except TimeoutError:
            logger.warning("Host did not signal load completion; checking readiness anyway.")
        if self._options.loading_initial_delay_seconds > 0:
            await self._sleep(self._options.loading_initial_delay_seconds)

    def _missing_signals(self) -> tuple[str, ...]:
        missing: list[str] = []
        for signal in self._state.required_signals:
            try:
                satisfied = bool(signal.predicate())
            except Exception:  # noqa: BLE001
                logger.debug("Readiness predicate '%s' raised.", signal.name, exc_info=True)
                satisfied = False
            if not satisfied:
                missing.append(signal.name)
        return tuple(missing)

    def _resolve(
        self,
        status: ReadinessStatus,
        attempts: int,
        missing: Sequence[str],
    ) -> ReadinessOutcome:
        outcome = ReadinessOutcome(
            status=status,
            attempts=attempts,
            missing_signals=tuple(missing),
        )
        self._state.status = status
        self._state.attempts = attempts
        self._state.missing_signals = outcome.missing_signals
        self._outcome = outcome
        logger.info("Host readiness resolved %s after %s attempt(s).", status.value, attempts)
        return outcome


async def await_readiness(
    signals: Iterable[ReadinessSignal],
    options: ReadinessOptions | None = None,
    registry: HostRegistry | None = None,
) -> ReadinessOutcome:
    """One-shot readiness check."""

    gate = ReadinessGate(signals, options=options, registry=registry)
    try:
        return await gate.wait()
    finally:
        await gate.close()


__all__ = [
    "ReadinessGate",
    "await_readiness",
    "global_defined",
    "global_truthy",
]
