"""Provider Failover Engine — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from failover_engine.shared.providers.classifier import DEFAULT_RATE_LIMIT_PATTERNS
from failover_engine.shared.providers.types import ProviderConfig


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ProviderSettings(BaseModel):
    """One provider entry of the ``PROVIDERS`` JSON list."""

    id: str = Field(..., min_length=1)
    models: list[str] = Field(..., min_length=1)
    hourly_limit: int = Field(0, ge=0)  # 0 = unlimited
    daily_limit: int = Field(0, ge=0)
    priority: int = 10

    @field_validator("models")
    @classmethod
    def _strip_models(cls, v: list[str]) -> list[str]:
        models = [m.strip() for m in v if m.strip()]
        if not models:
            raise ValueError("provider must declare at least one model")
        return models


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "provider-failover-engine"
    app_env: Environment = Environment.DEVELOPMENT
    app_host: str = "127.0.0.1"
    app_port: int = 8000
    log_level: str = "INFO"

    # ── Persistence ──────────────────────────────────────────
    state_file: str = "~/.local/share/provider-failover/state.json"
    flush_timeout_seconds: float = Field(2.0, gt=0)

    # ── Failover ─────────────────────────────────────────────
    cooldown_seconds: float = Field(3600.0, gt=0)
    default_model: str = ""
    providers: list[ProviderSettings] = Field(default_factory=list)
    rate_limit_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RATE_LIMIT_PATTERNS)
    )

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def _unique_provider_ids(self) -> Settings:
        seen: set[str] = set()
        for provider in self.providers:
            if provider.id in seen:
                raise ValueError(f"duplicate provider id {provider.id!r}")
            seen.add(provider.id)
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)


def build_provider_configs(settings: Settings) -> list[ProviderConfig]:
    """Build ProviderConfig list from settings values, in configuration order."""
    return [
        ProviderConfig(
            provider_id=p.id,
            models=tuple(dict.fromkeys(p.models)),
            hourly_limit=p.hourly_limit,
            daily_limit=p.daily_limit,
            priority=p.priority,
        )
        for p in settings.providers
    ]
