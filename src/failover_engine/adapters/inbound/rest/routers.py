"""Health and Provider Status — REST routers."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from failover_engine.application.dtos import (
    ErrorResponse,
    HealthResponse,
    ResetResponse,
    StatusReportResponse,
)
from failover_engine.config import Settings
from failover_engine.dependencies import get_app_settings, get_engine
from failover_engine.shared.providers.engine import RateLimitEngine

# ═══════════════════════════════════════════════════════════════
#  Health
# ═══════════════════════════════════════════════════════════════
health_router = APIRouter(tags=["Health"])


@health_router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    return HealthResponse(environment=settings.app_env.value)


@health_router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# ═══════════════════════════════════════════════════════════════
#  Provider status
# ═══════════════════════════════════════════════════════════════
providers_router = APIRouter(prefix="/providers", tags=["Provider Status"])


@providers_router.get("/status", response_model=StatusReportResponse)
def provider_status(engine: RateLimitEngine = Depends(get_engine)) -> StatusReportResponse:
    """Availability, usage vs limits, and cooldowns for every provider."""
    return StatusReportResponse.from_report(engine.get_status_report())


@providers_router.post(
    "/{provider_id}/reset",
    response_model=ResetResponse,
    responses={404: {"model": ErrorResponse}},
)
def reset_provider(
    provider_id: str,
    engine: RateLimitEngine = Depends(get_engine),
) -> ResetResponse:
    """Admin: clear cooldown and usage counters for a provider."""
    engine.reset_provider(provider_id)
    return ResetResponse(provider_id=provider_id)
