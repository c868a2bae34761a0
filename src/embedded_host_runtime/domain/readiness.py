"""Readiness gate models."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum


class ReadinessStatus(StrEnum):
    """Lifecycle of the host readiness check."""

    UNKNOWN = "UNKNOWN"
    POLLING = "POLLING"
    READY = "READY"
    FORCED = "FORCED"


TERMINAL_READINESS_STATUSES = frozenset({ReadinessStatus.READY, ReadinessStatus.FORCED})

ReadinessPredicate = Callable[[], bool]


@dataclass(slots=True, frozen=True)
class ReadinessSignal:
    """One named host-state predicate that must hold before boot."""

    name: str
    predicate: ReadinessPredicate


@dataclass(slots=True, frozen=True)
class ReadinessOptions:
    """Polling cadence for the readiness gate."""

    poll_interval_seconds: float = 0.1
    max_attempts: int = 50
    initial_delay_seconds: float = 0.0
    loading_initial_delay_seconds: float = 0.05

    @property
    def ceiling_seconds(self) -> float:
        """Upper bound of the polling phase."""

        return self.poll_interval_seconds * self.max_attempts


@dataclass(slots=True, frozen=True)
class ReadinessOutcome:
    """Terminal result of a readiness check."""

    status: ReadinessStatus
    attempts: int
    missing_signals: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        """Return whether boot proceeds without every required signal."""

        return self.status is ReadinessStatus.FORCED


@dataclass(slots=True)
class ReadinessState:
    """Mutable process-lifetime readiness state."""

    required_signals: tuple[ReadinessSignal, ...] = ()
    status: ReadinessStatus = ReadinessStatus.UNKNOWN
    attempts: int = 0
    missing_signals: tuple[str, ...] = field(default_factory=tuple)

    @property
    def resolved(self) -> bool:
        """Return whether the gate reached READY or FORCED."""

        return self.status in TERMINAL_READINESS_STATUSES


__all__ = [
    "ReadinessOptions",
    "ReadinessOutcome",
    "ReadinessPredicate",
    "ReadinessSignal",
    "ReadinessState",
    "ReadinessStatus",
    "TERMINAL_READINESS_STATUSES",
]
