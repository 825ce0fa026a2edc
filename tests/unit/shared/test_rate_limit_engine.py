"""Tests for RateLimitEngine — session lifecycle, failover, and persistence."""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import Any

import pytest

from failover_engine.adapters.outbound.state_store import InMemoryStateStore
from failover_engine.domain.exceptions import (
    NoProviderAvailableError,
    StateLoadCorruptError,
    StateWriteFailedError,
    UnknownProviderError,
    UnsupportedModelError,
)
from failover_engine.ports.outbound import NotificationPort, StateStorePort
from failover_engine.shared.providers.engine import RateLimitEngine
from failover_engine.shared.providers.types import (
    EngineState,
    ErrorOutcome,
    EventKind,
    ProviderConfig,
    ProviderState,
)


class FailingStore(StateStorePort):
    def __init__(self) -> None:
        self.attempts = 0

    def load(self) -> EngineState | None:
        return None

    def save(self, state: EngineState) -> None:
        self.attempts += 1
        raise StateWriteFailedError("memory", "disk full")


class CorruptStore(StateStorePort):
    def load(self) -> EngineState | None:
        raise StateLoadCorruptError("memory", "not json")

    def save(self, state: EngineState) -> None:
        pass


class SlowStore(StateStorePort):
    def __init__(self) -> None:
        self.release = threading.Event()

    def load(self) -> EngineState | None:
        return None

    def save(self, state: EngineState) -> None:
        self.release.wait(timeout=5)


class GatedRecordingStore(StateStorePort):
    """Blocks every save until released; records the p1 hourly count saved."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.saved: list[int] = []

    def load(self) -> EngineState | None:
        return None

    def save(self, state: EngineState) -> None:
        self.release.wait(timeout=5)
        self.saved.append(state.providers["p1"].request_count_hour)


class ExplodingSink(NotificationPort):
    def notify(self, event_kind: EventKind, provider_id: str, detail: dict[str, Any]) -> None:
        raise RuntimeError("toast service down")


# ═══════════════════════════════════════════════════════════════
#  Session start
# ═══════════════════════════════════════════════════════════════
class TestSessionStart:
    def test_selects_highest_priority(self, engine: RateLimitEngine, store) -> None:
        assert engine.on_session_start("model-x") == "p1"
        assert engine.current_provider_id == "p1"
        assert store.load().current_provider_id == "p1"

    def test_defaults_to_first_configured_model(self, engine: RateLimitEngine) -> None:
        assert engine.on_session_start() == "p1"

    def test_configured_default_model(self, provider_configs, clock) -> None:
        eng = RateLimitEngine(
            provider_configs, InMemoryStateStore(), clock=clock, default_model="model-y"
        )
        try:
            eng.on_error("p1", "429", None)
            assert eng.on_session_start() == "p3"
        finally:
            eng.close()

    def test_unsupported_model(self, engine: RateLimitEngine) -> None:
        with pytest.raises(UnsupportedModelError):
            engine.on_session_start("model-z")

    def test_no_provider_available(self, engine: RateLimitEngine) -> None:
        engine.on_error("p1", "rate limit", "model-x")
        engine.on_error("p2", "rate limit", "model-x")
        with pytest.raises(NoProviderAvailableError):
            engine.on_session_start("model-x")

    def test_creates_entries_for_every_provider(self, engine: RateLimitEngine, store) -> None:
        engine.on_session_start("model-x")
        assert set(store.load().providers) == {"p1", "p2", "p3"}


# ═══════════════════════════════════════════════════════════════
#  Request tracking
# ═══════════════════════════════════════════════════════════════
class TestRequestIssued:
    def test_counts_and_persists(self, engine: RateLimitEngine, store) -> None:
        st = engine.on_request_issued("p1")
        assert st.request_count_hour == 1
        assert store.load().providers["p1"].request_count_hour == 1

    def test_reaching_limit_starts_cooldown_without_error_count(
        self, engine: RateLimitEngine, sink, clock
    ) -> None:
        for _ in range(50):
            st = engine.on_request_issued("p1")
        assert st.cooldown_until == clock.now + timedelta(hours=1)
        assert st.error_count == 0
        assert sink.kinds() == [EventKind.COOLDOWN_STARTED]
        assert engine.get_status_report().get("p1").available is False

    def test_unknown_provider(self, engine: RateLimitEngine) -> None:
        with pytest.raises(UnknownProviderError):
            engine.on_request_issued("nope")


# ═══════════════════════════════════════════════════════════════
#  Error handling & failover
# ═══════════════════════════════════════════════════════════════
class TestOnError:
    def test_rate_limit_switches_provider(self, engine: RateLimitEngine, sink, clock) -> None:
        engine.on_session_start("model-x")
        result = engine.on_error("p1", "429 Too Many Requests", "model-x")
        assert result == "p2"
        assert engine.current_provider_id == "p2"

        switched = [e for e in sink.events if e[0] == EventKind.PROVIDER_SWITCHED]
        assert switched == [
            (
                EventKind.PROVIDER_SWITCHED,
                "p2",
                {"from_provider": "p1", "to_provider": "p2", "reason": "rate_limit", "model": "model-x"},
            )
        ]

    def test_quota_then_rate_limit_scenario(self, engine: RateLimitEngine, clock) -> None:
        engine.on_session_start("model-x")
        t = clock.now
        for _ in range(50):
            engine.on_request_issued("p1")

        assert engine.on_error("p1", "429 Too Many Requests", "model-x") == "p2"

        report = engine.get_status_report()
        p1 = report.get("p1")
        assert p1.available is False
        assert p1.cooldown_until == t + timedelta(hours=1)
        assert p1.requests_hour == 50
        assert report.current_provider_id == "p2"

    def test_unclassified_error_changes_nothing(self, engine: RateLimitEngine, sink) -> None:
        engine.on_session_start("model-x")
        result = engine.on_error("p1", "connection refused", "model-x")
        assert result is ErrorOutcome.NOT_RATE_LIMIT
        assert engine.current_provider_id == "p1"

        p1 = engine.get_status_report().get("p1")
        assert p1.available is True
        assert p1.cooldown_until is None
        assert p1.error_count == 1
        assert sink.events == []

    def test_all_exhausted(self, engine: RateLimitEngine, sink, store) -> None:
        engine.on_session_start("model-x")
        assert engine.on_error("p1", "rate limited", "model-x") == "p2"
        assert engine.on_error("p2", "rate limited", "model-x") is ErrorOutcome.ALL_PROVIDERS_EXHAUSTED

        assert EventKind.PROVIDERS_EXHAUSTED in sink.kinds()
        persisted = store.load()
        assert persisted.providers["p2"].cooldown_until is not None

    def test_repeat_rate_limit_keeps_first_cooldown(self, engine: RateLimitEngine, clock) -> None:
        engine.on_error("p1", "429", "model-x")
        first = engine.get_status_report().get("p1").cooldown_until
        clock.advance(minutes=10)
        engine.on_error("p1", "429", "model-x")
        p1 = engine.get_status_report().get("p1")
        assert p1.cooldown_until == first
        assert p1.error_count == 2

    def test_uses_session_model_when_omitted(self, engine: RateLimitEngine) -> None:
        engine.on_session_start("model-y")
        assert engine.on_error("p1", "too many requests") == "p3"

    def test_runtime_pattern(self, engine: RateLimitEngine) -> None:
        assert engine.on_error("p1", "engine overloaded", "model-x") is ErrorOutcome.NOT_RATE_LIMIT
        engine.add_rate_limit_pattern("overloaded")
        assert engine.on_error("p1", "engine overloaded", "model-x") == "p2"

    def test_notification_failures_are_contained(self, provider_configs, clock) -> None:
        eng = RateLimitEngine(
            provider_configs, InMemoryStateStore(), notifier=ExplodingSink(), clock=clock
        )
        try:
            assert eng.on_error("p1", "429", "model-x") == "p2"
        finally:
            eng.close()

    def test_unknown_provider(self, engine: RateLimitEngine) -> None:
        with pytest.raises(UnknownProviderError):
            engine.on_error("nope", "429", "model-x")


# ═══════════════════════════════════════════════════════════════
#  Time-based recovery
# ═══════════════════════════════════════════════════════════════
class TestRecovery:
    def test_cooldown_expires_lazily(self, engine: RateLimitEngine, clock) -> None:
        engine.on_error("p1", "429", "model-x")
        clock.advance(hours=1)
        assert engine.get_status_report().get("p1").available is True
        assert engine.on_session_start("model-x") == "p1"

    def test_idle_window_writes_only_on_change(self, engine: RateLimitEngine, store, clock) -> None:
        assert engine.on_idle_window() is False
        assert store.load() is None

        engine.on_request_issued("p2")
        clock.advance(hours=1)
        assert engine.on_idle_window() is True
        assert store.load().providers["p2"].request_count_hour == 0

    def test_idle_window_releases_cooldowns(self, engine: RateLimitEngine, store, clock) -> None:
        engine.on_error("p1", "429", "model-x")
        clock.advance(minutes=61)
        assert engine.on_idle_window() is True
        assert store.load().providers["p1"].cooldown_until is None

    def test_status_report_is_read_only(self, engine: RateLimitEngine, store, clock) -> None:
        engine.on_request_issued("p1")
        clock.advance(hours=2)
        report = engine.get_status_report()
        assert report.get("p1").requests_hour == 0
        assert store.load().providers["p1"].request_count_hour == 1

    def test_status_report_fields(self, engine: RateLimitEngine, clock) -> None:
        engine.on_session_start("model-x")
        engine.on_error("p1", "429", "model-x")
        clock.advance(minutes=15)
        p1 = engine.get_status_report().get("p1")
        assert p1.models == ("model-x", "model-y")
        assert p1.hourly_limit == 50
        assert p1.daily_limit == 500
        assert p1.cooldown_remaining_s == 45 * 60


# ═══════════════════════════════════════════════════════════════
#  Persistence
# ═══════════════════════════════════════════════════════════════
class TestPersistence:
    def test_state_survives_restart(self, provider_configs, store, clock) -> None:
        first = RateLimitEngine(provider_configs, store, clock=clock)
        first.on_session_start("model-x")
        first.on_error("p1", "429", "model-x")
        first.close()

        second = RateLimitEngine(provider_configs, store, clock=clock)
        try:
            assert second.current_provider_id == "p2"
            assert second.get_status_report().get("p1").available is False
        finally:
            second.close()

    def test_availability_rederived_after_offline_gap(self, provider_configs, store, clock) -> None:
        first = RateLimitEngine(provider_configs, store, clock=clock)
        first.on_error("p1", "429", "model-x")
        first.close()

        clock.advance(hours=3)
        second = RateLimitEngine(provider_configs, store, clock=clock)
        try:
            assert second.get_status_report().get("p1").available is True
        finally:
            second.close()

    def test_merges_new_providers_and_drops_removed(self, provider_configs, clock) -> None:
        stale = EngineState(
            providers={
                "p1": ProviderState.fresh(clock.now),
                "gone": ProviderState.fresh(clock.now),
            },
            current_provider_id="gone",
        )
        eng = RateLimitEngine(provider_configs, InMemoryStateStore(stale), clock=clock)
        try:
            report = eng.get_status_report()
            assert [p.provider_id for p in report.providers] == ["p1", "p2", "p3"]
            assert report.current_provider_id is None
        finally:
            eng.close()

    def test_corrupt_state_starts_fresh(self, provider_configs, clock) -> None:
        eng = RateLimitEngine(provider_configs, CorruptStore(), clock=clock)
        try:
            assert eng.on_session_start("model-x") == "p1"
        finally:
            eng.close()

    def test_write_failure_keeps_memory_authoritative(self, provider_configs, clock) -> None:
        store = FailingStore()
        eng = RateLimitEngine(provider_configs, store, clock=clock)
        try:
            assert eng.on_error("p1", "429", "model-x") == "p2"
            assert eng.current_provider_id == "p2"
            assert store.attempts == 1
        finally:
            eng.close()

    def test_slow_flush_does_not_block_routing(self, provider_configs, clock) -> None:
        store = SlowStore()
        eng = RateLimitEngine(provider_configs, store, clock=clock, flush_timeout=0.05)
        try:
            started = time.monotonic()
            assert eng.on_error("p1", "429", "model-x") == "p2"
            assert time.monotonic() - started < 2
        finally:
            store.release.set()
            eng.close()

    def test_stuck_disk_coalesces_queued_writes(self, provider_configs, clock) -> None:
        store = GatedRecordingStore()
        eng = RateLimitEngine(provider_configs, store, clock=clock, flush_timeout=0.01)
        try:
            for _ in range(5):
                eng.on_request_issued("p1")
        finally:
            store.release.set()
            eng.close()

        assert 1 <= len(store.saved) <= 2
        assert store.saved[-1] == 5

    def test_naive_clock_against_loaded_state(self, provider_configs, clock) -> None:
        cooling = ProviderState.fresh(clock.now)
        cooling.cooldown_until = clock.now + timedelta(minutes=30)
        store = InMemoryStateStore(EngineState(providers={"p1": cooling}))
        naive_now = clock.now.replace(tzinfo=None)

        eng = RateLimitEngine(provider_configs, store, clock=lambda: naive_now)
        try:
            assert eng.on_session_start("model-x") == "p2"
            assert eng.get_status_report().generated_at == clock.now
        finally:
            eng.close()


# ═══════════════════════════════════════════════════════════════
#  Admin & concurrency
# ═══════════════════════════════════════════════════════════════
class TestAdmin:
    def test_reset_provider(self, engine: RateLimitEngine) -> None:
        engine.on_request_issued("p1")
        engine.on_error("p1", "429", "model-x")
        engine.reset_provider("p1")
        p1 = engine.get_status_report().get("p1")
        assert p1.available is True
        assert p1.requests_hour == 0
        assert p1.error_count == 1

    def test_reset_unknown_provider(self, engine: RateLimitEngine) -> None:
        with pytest.raises(UnknownProviderError):
            engine.reset_provider("nope")

    def test_concurrent_requests_are_not_lost(self, clock) -> None:
        configs = [ProviderConfig(provider_id="solo", models=("m",))]
        eng = RateLimitEngine(configs, InMemoryStateStore(), clock=clock)

        def worker() -> None:
            for _ in range(100):
                eng.on_request_issued("solo")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            assert eng.get_status_report().get("solo").requests_hour == 800
        finally:
            eng.close()
