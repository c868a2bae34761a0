"""Top-level API router composition."""

from fastapi import APIRouter

from embedded_host_runtime.api.routes import (
    data_router,
    health_router,
    host_router,
    operations_router,
)

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(host_router)
api_router.include_router(data_router)
api_router.include_router(operations_router)

__all__ = ["api_router"]
