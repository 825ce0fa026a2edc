"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs adapt the engine's dataclass snapshots to the JSON the status
surface serves; they are not used inside the engine.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from failover_engine.shared.providers.types import ProviderStatus, StatusReport


class ErrorResponse(BaseModel):
    code: str
    message: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"


# ═══════════════════════════════════════════════════════════════
#  Provider status
# ═══════════════════════════════════════════════════════════════
class UsageWindow(BaseModel):
    used: int = Field(..., ge=0)
    limit: int | None = Field(None, description="None when unlimited")


class ProviderStatusResponse(BaseModel):
    provider_id: str
    available: bool
    is_current: bool
    models: list[str]
    priority: int
    hourly: UsageWindow
    daily: UsageWindow
    cooldown_until: datetime | None = None
    cooldown_remaining_s: float = 0.0
    error_count: int = 0

    @classmethod
    def from_status(cls, status: ProviderStatus, *, current: str | None) -> ProviderStatusResponse:
        return cls(
            provider_id=status.provider_id,
            available=status.available,
            is_current=status.provider_id == current,
            models=list(status.models),
            priority=status.priority,
            hourly=UsageWindow(used=status.requests_hour, limit=status.hourly_limit or None),
            daily=UsageWindow(used=status.requests_day, limit=status.daily_limit or None),
            cooldown_until=status.cooldown_until,
            cooldown_remaining_s=round(status.cooldown_remaining_s, 1),
            error_count=status.error_count,
        )


class StatusReportResponse(BaseModel):
    generated_at: datetime
    current_provider_id: str | None = None
    providers: list[ProviderStatusResponse] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: StatusReport) -> StatusReportResponse:
        return cls(
            generated_at=report.generated_at,
            current_provider_id=report.current_provider_id,
            providers=[
                ProviderStatusResponse.from_status(p, current=report.current_provider_id)
                for p in report.providers
            ],
        )


class ResetResponse(BaseModel):
    status: str = "reset"
    provider_id: str
