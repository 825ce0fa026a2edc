"""Core types for the provider failover engine."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime


class CooldownReason(str, enum.Enum):
    """Why a provider was moved into cooldown."""

    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"


class ErrorClassification(str, enum.Enum):
    """Result of matching raw error text against rate-limit patterns."""

    RATE_LIMIT = "rate_limit"
    UNCLASSIFIED = "unclassified"


class ErrorOutcome(enum.Enum):
    """Non-provider results of ``RateLimitEngine.on_error``.

    Deliberately not a ``str`` enum so an outcome can never compare equal
    to a provider id.
    """

    NOT_RATE_LIMIT = "not_rate_limit"
    ALL_PROVIDERS_EXHAUSTED = "all_providers_exhausted"


class EventKind(str, enum.Enum):
    """Notification kinds emitted to the host."""

    PROVIDER_SWITCHED = "provider_switched"
    PROVIDERS_EXHAUSTED = "providers_exhausted"
    COOLDOWN_STARTED = "cooldown_started"


@dataclass(frozen=True)
class ProviderConfig:
    """Static configuration for a single provider.

    Attributes:
        provider_id:  Unique identifier (e.g. "anthropic", "openrouter").
        models:       Ordered model identifiers the provider can serve.
        hourly_limit: Max requests per hourly window (0 = unlimited).
        daily_limit:  Max requests per daily window (0 = unlimited).
        priority:     Lower = more preferred; ties keep configuration order.
    """

    provider_id: str
    models: tuple[str, ...] = ()
    hourly_limit: int = 0
    daily_limit: int = 0
    priority: int = 10

    @property
    def hourly_unlimited(self) -> bool:
        return self.hourly_limit <= 0

    @property
    def daily_unlimited(self) -> bool:
        return self.daily_limit <= 0

    def supports(self, model_id: str) -> bool:
        return model_id in self.models


@dataclass
class ProviderState:
    """Mutable usage and availability state for one provider."""

    window_start_hour: datetime
    window_start_day: datetime
    request_count_hour: int = 0
    request_count_day: int = 0
    cooldown_until: datetime | None = None
    error_count: int = 0

    @classmethod
    def fresh(cls, now: datetime) -> ProviderState:
        return cls(window_start_hour=now, window_start_day=now)

    def is_available(self, now: datetime) -> bool:
        # Always derived; a persisted flag may be stale across restarts.
        return self.cooldown_until is None or self.cooldown_until <= now

    def copy(self) -> ProviderState:
        return replace(self)


@dataclass
class EngineState:
    """Full persisted snapshot of the engine."""

    providers: dict[str, ProviderState] = field(default_factory=dict)
    current_provider_id: str | None = None
    # Derived from ProviderConfig; cached for diagnostics only.
    model_priority: dict[str, list[str]] = field(default_factory=dict)

    def snapshot(self) -> EngineState:
        return EngineState(
            providers={pid: st.copy() for pid, st in self.providers.items()},
            current_provider_id=self.current_provider_id,
            model_priority={m: list(ids) for m, ids in self.model_priority.items()},
        )


@dataclass(frozen=True)
class ProviderStatus:
    """Read-only status of a single provider at a point in time."""

    provider_id: str
    available: bool
    models: tuple[str, ...]
    priority: int
    requests_hour: int
    hourly_limit: int
    requests_day: int
    daily_limit: int
    cooldown_until: datetime | None
    cooldown_remaining_s: float
    error_count: int


@dataclass(frozen=True)
class StatusReport:
    """Snapshot handed to status renderers."""

    generated_at: datetime
    current_provider_id: str | None
    providers: tuple[ProviderStatus, ...] = ()

    def get(self, provider_id: str) -> ProviderStatus | None:
        return next((p for p in self.providers if p.provider_id == provider_id), None)
