"""Host environment adapters."""

from embedded_host_runtime.infrastructure.host.host_global_registry import HostGlobalRegistry

__all__ = ["HostGlobalRegistry"]
