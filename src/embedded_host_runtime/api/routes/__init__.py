"""Route modules public API."""

from embedded_host_runtime.api.routes.data import router as data_router
from embedded_host_runtime.api.routes.health import router as health_router
from embedded_host_runtime.api.routes.host import router as host_router
from embedded_host_runtime.api.routes.operations import router as operations_router

__all__ = ["data_router", "health_router", "host_router", "operations_router"]
