"""Domain exceptions for readiness, data acquisition and operation tracking."""

from __future__ import annotations

from enum import StrEnum


class ErrorCategory(StrEnum):
    """Retry-relevant classification of collaborator failures."""

    AUTH = "auth"
    TRANSIENT = "transient"
    CLIENT = "client"


class EmbeddedRuntimeError(Exception):
    """Base class for runtime errors."""


class BackendError(EmbeddedRuntimeError):
    """Raised when a backend collaborator call fails."""

    category: ErrorCategory = ErrorCategory.TRANSIENT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Return whether local retry is allowed for this failure."""

        return self.category is ErrorCategory.TRANSIENT


class AuthorizationError(BackendError):
    """Raised for authentication or permission failures."""

    category = ErrorCategory.AUTH


class TransientBackendError(BackendError):
    """Raised for network failures, timeouts and server-side errors."""

    category = ErrorCategory.TRANSIENT


class ClientRequestError(BackendError):
    """Raised for well-formed requests the backend rejected."""

    category = ErrorCategory.CLIENT


class OperationTrackingError(EmbeddedRuntimeError):
    """Base class for operation tracker errors."""


class OperationAlreadyTrackedError(OperationTrackingError):
    """Raised when a kind already has an active tracked operation."""


class UnsupportedOperationKindError(OperationTrackingError):
    """Raised when an operation kind is not recognized by this build."""


class InvalidOperationStateError(OperationTrackingError):
    """Raised when a transition is not allowed from the current state."""


class StorageUnavailableError(EmbeddedRuntimeError):
    """Raised when durable storage cannot be read or written."""


class CorruptOperationRecordError(StorageUnavailableError):
    """Raised when a stored operation record cannot be decoded."""


def classify_http_status(status_code: int) -> ErrorCategory:
    """Map an unsuccessful HTTP status code to an error category."""

    if status_code in {401, 403}:
        return ErrorCategory.AUTH
    if status_code in {408, 425, 429} or status_code >= 500:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.CLIENT


def backend_error_for_status(status_code: int, message: str) -> BackendError:
    """Build a typed backend error for an unsuccessful HTTP status code."""

    category = classify_http_status(status_code)
    if category is ErrorCategory.AUTH:
        return AuthorizationError(message, status_code=status_code)
    if category is ErrorCategory.TRANSIENT:
        return TransientBackendError(message, status_code=status_code)
    return ClientRequestError(message, status_code=status_code)


__all__ = [
    "AuthorizationError",
    "BackendError",
    "ClientRequestError",
    "CorruptOperationRecordError",
    "EmbeddedRuntimeError",
    "ErrorCategory",
    "InvalidOperationStateError",
    "OperationAlreadyTrackedError",
    "OperationTrackingError",
    "StorageUnavailableError",
    "TransientBackendError",
    "UnsupportedOperationKindError",
    "backend_error_for_status",
    "classify_http_status",
]
