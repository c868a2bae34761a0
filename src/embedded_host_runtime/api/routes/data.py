"""Hybrid data routes."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response

from embedded_host_runtime.api.dependencies import get_runtime
from embedded_host_runtime.application.services import EmbeddedRuntime
from embedded_host_runtime.domain.errors import BackendError, ErrorCategory
from embedded_host_runtime.domain.host_context import EnhancedPayload, HostContext
from embedded_host_runtime.domain.queries import QueryDescriptor
from embedded_host_runtime.domain.runtime_models import (
    DynamicQueryResponse,
    InvalidateRequest,
    InvalidateResponse,
    ServedValueResponse,
)

router = APIRouter(prefix="/data", tags=["data"])


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, BackendError):
        if exc.category is ErrorCategory.AUTH:
            raise HTTPException(status_code=401, detail=str(exc))
        if exc.category is ErrorCategory.TRANSIENT:
            raise HTTPException(status_code=503, detail=str(exc))
        if exc.status_code == 404:
            raise HTTPException(status_code=404, detail=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
    raise HTTPException(status_code=500, detail="Unexpected data error")


@router.get("/immediate", response_model=HostContext, status_code=200)
async def immediate(runtime: EmbeddedRuntime = Depends(get_runtime)) -> HostContext:
    """Tier 1 host context, or the fallback context."""

    await runtime.wait_booted()
    return runtime.coordinator.immediate()


@router.get(
    "/enhanced",
    response_model=EnhancedPayload,
    status_code=200,
    responses={204: {"description": "No precomputed payload was injected."}},
)
async def enhanced(runtime: EmbeddedRuntime = Depends(get_runtime)) -> EnhancedPayload | Response:
    """Tier 2 precomputed payload; 204 when absent."""

    await runtime.wait_booted()
    payload = runtime.coordinator.enhanced()
    if payload is None:
        return Response(status_code=204)
    return payload


@router.post("/query", response_model=DynamicQueryResponse, status_code=200)
async def dynamic_query(
    query: QueryDescriptor,
    revalidate: bool = Query(default=False),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> DynamicQueryResponse:
    """Tier 3 query served from the shared cache."""

    await runtime.wait_booted()
    try:
        await runtime.coordinator.dynamic(query, revalidate=revalidate)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return DynamicQueryResponse.from_state(runtime.coordinator.query_state(query))


@router.post("/invalidate", response_model=InvalidateResponse, status_code=200)
async def invalidate(
    request: InvalidateRequest,
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> InvalidateResponse:
    """Mark cached query results stale."""

    target = request.key or QueryDescriptor.key_prefix(request.record_type or "")
    return InvalidateResponse(invalidated=runtime.coordinator.invalidate(target))


@router.get("/counts/{name}", response_model=ServedValueResponse, status_code=200)
async def resolve_count(
    name: str = Path(...),
    record_type: str | None = Query(default=None, alias="recordType"),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> ServedValueResponse:
    """Freshest count across tiers."""

    await runtime.wait_booted()
    query = QueryDescriptor(record_type=record_type) if record_type else None
    return ServedValueResponse.from_served(runtime.coordinator.resolve_count(name, query))


__all__ = ["router"]
