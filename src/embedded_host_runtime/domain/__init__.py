"""Domain public API."""

from embedded_host_runtime.domain.errors import (
    AuthorizationError,
    BackendError,
    ClientRequestError,
    CorruptOperationRecordError,
    EmbeddedRuntimeError,
    ErrorCategory,
    InvalidOperationStateError,
    OperationAlreadyTrackedError,
    OperationTrackingError,
    StorageUnavailableError,
    TransientBackendError,
    UnsupportedOperationKindError,
)
from embedded_host_runtime.domain.host_context import (
    DataTier,
    EnhancedPayload,
    HostContext,
)
from embedded_host_runtime.domain.operations import (
    OperationInitiation,
    OperationKind,
    OperationRecord,
    OperationSnapshot,
    OperationState,
    RecoveryOffer,
    RemoteOperationStatus,
    StatusPollResult,
)
from embedded_host_runtime.domain.ports import (
    HostRegistry,
    OperationEventPublisher,
    OperationLauncher,
    OperationRecordStore,
    QueryEndpoint,
    StatusPollEndpoint,
)
from embedded_host_runtime.domain.queries import (
    QueryDescriptor,
    QueryPage,
    QueryResult,
    QueryStateSnapshot,
    ServedValue,
)
from embedded_host_runtime.domain.readiness import (
    ReadinessOptions,
    ReadinessOutcome,
    ReadinessSignal,
    ReadinessState,
    ReadinessStatus,
)

__all__ = [
    "AuthorizationError",
    "BackendError",
    "ClientRequestError",
    "CorruptOperationRecordError",
    "DataTier",
    "EmbeddedRuntimeError",
    "EnhancedPayload",
    "ErrorCategory",
    "HostContext",
    "HostRegistry",
    "InvalidOperationStateError",
    "OperationAlreadyTrackedError",
    "OperationEventPublisher",
    "OperationInitiation",
    "OperationKind",
    "OperationLauncher",
    "OperationRecord",
    "OperationRecordStore",
    "OperationSnapshot",
    "OperationState",
    "OperationTrackingError",
    "QueryDescriptor",
    "QueryEndpoint",
    "QueryPage",
    "QueryResult",
    "QueryStateSnapshot",
    "ReadinessOptions",
    "ReadinessOutcome",
    "ReadinessSignal",
    "ReadinessState",
    "ReadinessStatus",
    "RecoveryOffer",
    "RemoteOperationStatus",
    "ServedValue",
    "StatusPollEndpoint",
    "StatusPollResult",
    "StorageUnavailableError",
    "TransientBackendError",
    "UnsupportedOperationKindError",
]
