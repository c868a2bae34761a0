"""Host-side injection routes."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Path

from embedded_host_runtime.api.dependencies import get_host_registry
from embedded_host_runtime.domain.runtime_models import HostGlobalResponse
from embedded_host_runtime.infrastructure.host import HostGlobalRegistry

router = APIRouter(prefix="/host", tags=["host"])


@router.put("/globals/{name}", response_model=HostGlobalResponse, status_code=200)
async def inject_global(
    name: str = Path(..., min_length=1),
    value: Any = Body(default=None),
    registry: HostGlobalRegistry = Depends(get_host_registry),
) -> HostGlobalResponse:
    """Inject one named host value."""

    registry.inject(name, value)
    return HostGlobalResponse(name=name, defined=registry.contains(name))


@router.post("/loaded", status_code=204)
async def mark_loaded(registry: HostGlobalRegistry = Depends(get_host_registry)) -> None:
    """Signal host load completion."""

    registry.mark_loaded()


__all__ = ["router"]
