from __future__ import annotations

import asyncio
import logging
import time

import pytest

from embedded_host_runtime.application.services import (
    ReadinessGate,
    await_readiness,
    global_defined,
    global_truthy,
)
from embedded_host_runtime.domain.readiness import (
    ReadinessOptions,
    ReadinessSignal,
    ReadinessStatus,
)
from embedded_host_runtime.infrastructure.host import HostGlobalRegistry


class RecordingSleep:
    """Sleep double that records delays and yields control without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self.on_sleep: list[object] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.on_sleep:
            action = self.on_sleep.pop(0)
            if callable(action):
                action()
        await asyncio.sleep(0)


def test_all_signals_present_resolves_ready_on_first_check() -> None:
    registry = HostGlobalRegistry(
        {"sessionToken": "token-1", "hostContext": {"userId": "u-1"}},
        loaded=True,
    )
    sleep = RecordingSleep()

    async def scenario() -> object:
        gate = ReadinessGate(
            [global_defined(registry, "sessionToken"), global_defined(registry, "hostContext")],
            options=ReadinessOptions(poll_interval_seconds=0.05, max_attempts=3),
            registry=registry,
            sleep=sleep,
        )
        return await gate.wait()

    outcome = asyncio.run(scenario())

    assert outcome.status is ReadinessStatus.READY
    assert outcome.attempts == 1
    assert outcome.missing_signals == ()
    assert sleep.delays == []


def test_missing_signals_resolve_forced_after_max_attempts(
    caplog: pytest.LogCaptureFixture,
) -> None:
    signals = [
        ReadinessSignal("tokenPresent", lambda: False),
        ReadinessSignal("flagReady", lambda: False),
    ]

    async def scenario() -> tuple[object, float]:
        started = time.monotonic()
        outcome = await await_readiness(
            signals,
            options=ReadinessOptions(poll_interval_seconds=0.05, max_attempts=3),
        )
        return outcome, time.monotonic() - started

    with caplog.at_level(logging.WARNING):
        outcome, elapsed = asyncio.run(scenario())

    assert outcome.status is ReadinessStatus.FORCED
    assert outcome.attempts == 3
    assert outcome.missing_signals == ("tokenPresent", "flagReady")
    assert outcome.degraded is True
    assert elapsed >= 0.09
    assert "tokenPresent, flagReady" in caplog.text


def test_forced_gate_waits_one_interval_fewer_than_attempts() -> None:
    sleep = RecordingSleep()
    options = ReadinessOptions(poll_interval_seconds=0.05, max_attempts=3)

    async def scenario() -> object:
        gate = ReadinessGate(
            [ReadinessSignal("tokenPresent", lambda: False)],
            options,
            sleep=sleep,
        )
        return await gate.wait()

    outcome = asyncio.run(scenario())

    assert outcome.status is ReadinessStatus.FORCED
    assert sleep.delays == [0.05, 0.05]
    assert sum(sleep.delays) <= options.ceiling_seconds


def test_signal_injected_while_polling_resolves_ready_with_attempt_count() -> None:
    registry = HostGlobalRegistry(loaded=True)
    sleep = RecordingSleep()
    sleep.on_sleep = [None, lambda: registry.inject("sessionToken", "token-1")]

    async def scenario() -> object:
        gate = ReadinessGate(
            [global_defined(registry, "sessionToken")],
            options=ReadinessOptions(poll_interval_seconds=0.05, max_attempts=5),
            registry=registry,
            sleep=sleep,
        )
        return await gate.wait()

    outcome = asyncio.run(scenario())

    assert outcome.status is ReadinessStatus.READY
    assert outcome.attempts == 3
    assert sleep.delays == [0.05, 0.05]


def test_gate_waits_for_host_load_signal_before_first_check() -> None:
    registry = HostGlobalRegistry()

    async def scenario() -> tuple[object, bool]:
        gate = ReadinessGate(
            [global_defined(registry, "sessionToken")],
            options=ReadinessOptions(
                poll_interval_seconds=0.05,
                max_attempts=20,
                loading_initial_delay_seconds=0.01,
            ),
            registry=registry,
        )
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0.02)
        polled_before_load = gate.state.attempts > 0
        registry.inject("sessionToken", "token-1")
        registry.mark_loaded()
        return await waiter, polled_before_load

    outcome, polled_before_load = asyncio.run(scenario())

    assert polled_before_load is False
    assert outcome.status is ReadinessStatus.READY
    assert outcome.attempts == 1


def test_gate_checks_anyway_when_host_never_signals_load() -> None:
    registry = HostGlobalRegistry({"sessionToken": "token-1"})

    async def scenario() -> object:
        gate = ReadinessGate(
            [global_defined(registry, "sessionToken")],
            options=ReadinessOptions(
                poll_interval_seconds=0.01,
                max_attempts=2,
                loading_initial_delay_seconds=0.0,
            ),
            registry=registry,
        )
        return await gate.wait()

    outcome = asyncio.run(scenario())

    assert outcome.status is ReadinessStatus.READY
    assert outcome.attempts == 1


def test_concurrent_waiters_share_one_resolution() -> None:
    calls: list[int] = []

    def predicate() -> bool:
        calls.append(1)
        return len(calls) >= 2

    async def scenario() -> tuple[object, object, object]:
        gate = ReadinessGate(
            [ReadinessSignal("eventually", predicate)],
            options=ReadinessOptions(poll_interval_seconds=0.01, max_attempts=5),
        )
        first, second = await asyncio.gather(gate.wait(), gate.wait())
        third = await gate.wait()
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first is second
    assert second is third
    assert len(calls) == 2


def test_raising_predicate_counts_as_missing() -> None:
    def broken() -> bool:
        raise KeyError("hostContext")

    async def scenario() -> object:
        return await await_readiness(
            [ReadinessSignal("hostContext", broken)],
            options=ReadinessOptions(poll_interval_seconds=0.001, max_attempts=2),
        )

    outcome = asyncio.run(scenario())

    assert outcome.status is ReadinessStatus.FORCED
    assert outcome.missing_signals == ("hostContext",)


def test_global_truthy_rejects_falsy_host_values() -> None:
    registry = HostGlobalRegistry({"featureFlagsLoaded": False, "sessionToken": "t"}, loaded=True)

    async def scenario() -> object:
        return await await_readiness(
            [
                global_truthy(registry, "featureFlagsLoaded"),
                global_truthy(registry, "sessionToken"),
            ],
            options=ReadinessOptions(poll_interval_seconds=0.001, max_attempts=2),
            registry=registry,
        )

    outcome = asyncio.run(scenario())

    assert outcome.status is ReadinessStatus.FORCED
    assert outcome.missing_signals == ("featureFlagsLoaded",)


def test_close_stops_polling_before_resolution() -> None:
    async def scenario() -> ReadinessStatus:
        gate = ReadinessGate(
            [ReadinessSignal("never", lambda: False)],
            options=ReadinessOptions(poll_interval_seconds=10.0, max_attempts=5),
        )
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0.01)
        await gate.close()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        return gate.state.status

    status = asyncio.run(scenario())

    assert status is ReadinessStatus.POLLING


def test_registry_reads_do_not_mutate_host_values() -> None:
    registry = HostGlobalRegistry({"hostContext": {"roles": ["itil"]}}, loaded=True)

    copy = registry.get("hostContext")
    copy["roles"].append("admin")

    assert registry.get("hostContext") == {"roles": ["itil"]}
    assert registry.contains("missing") is False
