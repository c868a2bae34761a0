"""Application services public API."""

from embedded_host_runtime.application.services.embedded_runtime import EmbeddedRuntime
from embedded_host_runtime.application.services.hybrid_data_coordinator import (
    HybridDataCoordinator,
    RetryPolicy,
)
from embedded_host_runtime.application.services.operation_tracker import (
    OperationListener,
    OperationTracker,
)
from embedded_host_runtime.application.services.readiness_gate import (
    ReadinessGate,
    await_readiness,
    global_defined,
    global_truthy,
)

__all__ = [
    "EmbeddedRuntime",
    "HybridDataCoordinator",
    "OperationListener",
    "OperationTracker",
    "ReadinessGate",
    "RetryPolicy",
    "await_readiness",
    "global_defined",
    "global_truthy",
]
