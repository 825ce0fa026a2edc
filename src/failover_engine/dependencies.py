"""Dependency wiring — builds the engine from settings and exposes it to routes.

The engine instance lives on ``app.state``; nothing here is a module-level
singleton.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import Request

from failover_engine.adapters.outbound.notifications import LogNotificationSink
from failover_engine.adapters.outbound.state_store import JsonFileStateStore
from failover_engine.config import Settings, build_provider_configs
from failover_engine.ports.outbound import NotificationPort, StateStorePort
from failover_engine.shared.providers.engine import RateLimitEngine


def build_engine(
    settings: Settings,
    *,
    store: StateStorePort | None = None,
    notifier: NotificationPort | None = None,
) -> RateLimitEngine:
    """Construct the engine described by ``settings``.

    Raises:
        ConfigurationError: the provider list is empty or invalid.
    """
    return RateLimitEngine(
        build_provider_configs(settings),
        store or JsonFileStateStore(settings.state_file),
        notifier=notifier or LogNotificationSink(),
        rate_limit_patterns=settings.rate_limit_patterns,
        cooldown=timedelta(seconds=settings.cooldown_seconds),
        flush_timeout=settings.flush_timeout_seconds,
        default_model=settings.default_model or None,
    )


def get_engine(request: Request) -> RateLimitEngine:
    return request.app.state.engine


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
