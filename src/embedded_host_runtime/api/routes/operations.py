"""Long-running operation tracking routes."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query

from embedded_host_runtime.api.dependencies import get_runtime
from embedded_host_runtime.application.services import EmbeddedRuntime
from embedded_host_runtime.domain.errors import (
    BackendError,
    ErrorCategory,
    InvalidOperationStateError,
    OperationAlreadyTrackedError,
    UnsupportedOperationKindError,
)
from embedded_host_runtime.domain.runtime_models import (
    OperationStartRequest,
    OperationStateResponse,
    RecoveryOfferResponse,
)

router = APIRouter(prefix="/operations", tags=["operations"])


def _raise_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, OperationAlreadyTrackedError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, UnsupportedOperationKindError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, InvalidOperationStateError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, BackendError):
        if exc.category is ErrorCategory.AUTH:
            raise HTTPException(status_code=401, detail=str(exc))
        if exc.category is ErrorCategory.TRANSIENT:
            raise HTTPException(status_code=503, detail=str(exc))
        if exc.status_code == 404:
            raise HTTPException(status_code=404, detail=str(exc))
        raise HTTPException(status_code=400, detail=str(exc))
    raise HTTPException(status_code=500, detail="Unexpected operation tracking error")


@router.get("", response_model=list[OperationStateResponse], status_code=200)
async def list_operations(
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> list[OperationStateResponse]:
    """Tracking state of every supported kind."""

    return [
        OperationStateResponse.from_snapshot(snapshot)
        for snapshot in runtime.tracker.snapshots()
    ]


@router.get("/recoverable", response_model=list[RecoveryOfferResponse], status_code=200)
async def list_recoverable(
    refresh: bool = Query(default=False),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> list[RecoveryOfferResponse]:
    """Pending recovery offers; `refresh` re-reads durable storage."""

    await runtime.wait_booted()
    if refresh:
        try:
            await runtime.tracker.check_for_recoverable()
        except Exception as exc:  # noqa: BLE001
            _raise_http_exception(exc)
    tracker = runtime.tracker
    offers = [tracker.recovery_offer(kind) for kind in sorted(tracker.supported_kinds)]
    return [RecoveryOfferResponse.from_offer(offer) for offer in offers if offer is not None]


@router.post("/{kind}/start", response_model=OperationStateResponse, status_code=202)
async def start_operation(
    kind: str = Path(...),
    request: OperationStartRequest | None = Body(default=None),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> OperationStateResponse:
    """Initiate an operation on the backend and track it."""

    await runtime.wait_booted()
    parameters = request.parameters if request is not None else None
    try:
        snapshot = await runtime.start_operation(kind, parameters)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return OperationStateResponse.from_snapshot(snapshot)


@router.post("/{kind}/resume", response_model=OperationStateResponse, status_code=200)
async def resume_operation(
    kind: str = Path(...),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> OperationStateResponse:
    """Resume tracking of a recovered operation."""

    await runtime.wait_booted()
    try:
        snapshot = await runtime.resume_operation(kind)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return OperationStateResponse.from_snapshot(snapshot)


@router.post("/{kind}/cancel-tracking", response_model=OperationStateResponse, status_code=200)
async def cancel_tracking(
    kind: str = Path(...),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> OperationStateResponse:
    """Stop tracking locally; the server-side operation keeps running."""

    await runtime.wait_booted()
    try:
        snapshot = await runtime.tracker.cancel_tracking(kind)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return OperationStateResponse.from_snapshot(snapshot)


@router.post("/{kind}/server-cancel", response_model=OperationStateResponse, status_code=202)
async def cancel_on_server(
    kind: str = Path(...),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> OperationStateResponse:
    """Request server-side cancellation; tracking continues until terminal status."""

    await runtime.wait_booted()
    try:
        snapshot = await runtime.cancel_on_server(kind)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return OperationStateResponse.from_snapshot(snapshot)


@router.get("/{kind}/state", response_model=OperationStateResponse, status_code=200)
async def operation_state(
    kind: str = Path(...),
    runtime: EmbeddedRuntime = Depends(get_runtime),
) -> OperationStateResponse:
    """Current tracking state for one kind."""

    try:
        snapshot = runtime.tracker.current_state(kind)
    except Exception as exc:  # noqa: BLE001
        _raise_http_exception(exc)
    return OperationStateResponse.from_snapshot(snapshot)


__all__ = ["router"]
