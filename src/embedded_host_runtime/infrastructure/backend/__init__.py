"""Backend HTTP adapters."""

from embedded_host_runtime.infrastructure.backend.client import BackendClient

__all__ = ["BackendClient"]
