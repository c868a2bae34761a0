"""Health and readiness routes."""

from fastapi import APIRouter, Depends

from embedded_host_runtime.api.dependencies import get_runtime
from embedded_host_runtime.application.services import EmbeddedRuntime
from embedded_host_runtime.domain.runtime_models import ReadinessResponse, RecoveryOfferResponse

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    """Liveness probe."""

    return {"status": "ok"}


@router.get("/readiness", response_model=ReadinessResponse, status_code=200)
async def readiness(runtime: EmbeddedRuntime = Depends(get_runtime)) -> ReadinessResponse:
    """Readiness gate state; never blocks on the gate."""

    state = runtime.readiness_gate.state
    return ReadinessResponse(
        status=state.status,
        attempts=state.attempts,
        missing_signals=list(state.missing_signals),
        degraded=runtime.readiness_outcome is not None and runtime.readiness_outcome.degraded,
        booted=runtime.booted,
        recovery_offers=[
            RecoveryOfferResponse.from_offer(offer) for offer in runtime.recovery_offers
        ],
    )


__all__ = ["router"]
