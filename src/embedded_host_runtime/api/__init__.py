"""HTTP API package."""

from embedded_host_runtime.api.router import api_router

__all__ = ["api_router"]
