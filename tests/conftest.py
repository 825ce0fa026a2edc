"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from failover_engine.adapters.outbound.state_store import InMemoryStateStore
from failover_engine.ports.outbound import NotificationPort
from failover_engine.shared.providers.engine import RateLimitEngine
from failover_engine.shared.providers.types import EventKind, ProviderConfig

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class ManualClock:
    """Deterministic clock; tests move time forward explicitly."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink(NotificationPort):
    def __init__(self) -> None:
        self.events: list[tuple[EventKind, str, dict[str, Any]]] = []

    def notify(self, event_kind: EventKind, provider_id: str, detail: dict[str, Any]) -> None:
        self.events.append((event_kind, provider_id, detail))

    def kinds(self) -> list[EventKind]:
        return [kind for kind, _, _ in self.events]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def provider_configs() -> list[ProviderConfig]:
    return [
        ProviderConfig(
            provider_id="p1",
            models=("model-x", "model-y"),
            hourly_limit=50,
            daily_limit=500,
            priority=1,
        ),
        ProviderConfig(
            provider_id="p2",
            models=("model-x",),
            hourly_limit=100,
            priority=2,
        ),
        ProviderConfig(
            provider_id="p3",
            models=("model-y",),
            priority=3,
        ),
    ]


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def engine(
    provider_configs: list[ProviderConfig],
    store: InMemoryStateStore,
    sink: RecordingSink,
    clock: ManualClock,
):
    eng = RateLimitEngine(provider_configs, store, notifier=sink, clock=clock)
    yield eng
    eng.close()
