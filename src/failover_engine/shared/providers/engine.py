"""Rate-limit engine — the entry-point the host calls on session events.

Composes ProviderRegistry, UsageTracker, CooldownController,
RateLimitClassifier, and FailoverSelector around one shared EngineState.
The host reports requests and errors; the engine decides which provider
should take the next attempt and persists what it learned.  It never
retries or issues calls itself.

Usage::

    engine = RateLimitEngine(providers, JsonFileStateStore(path))
    provider = engine.on_session_start("claude-sonnet")
    engine.on_request_issued(provider)
    outcome = engine.on_error(provider, "429 Too Many Requests", "claude-sonnet")
"""

from __future__ import annotations

import concurrent.futures
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

import structlog

from failover_engine.domain.exceptions import (
    NoProviderAvailableError,
    PersistenceError,
    UnsupportedModelError,
)
from failover_engine.ports.outbound import NotificationPort, StateStorePort
from failover_engine.shared.clock import Clock, as_utc, utcnow
from failover_engine.shared.observability.metrics import (
    PROVIDER_AVAILABLE,
    PROVIDER_COOLDOWNS_TOTAL,
    PROVIDER_ERRORS_TOTAL,
    PROVIDER_REQUESTS_TOTAL,
    PROVIDER_SWITCHES_TOTAL,
    PROVIDERS_EXHAUSTED_TOTAL,
    STATE_WRITE_FAILURES_TOTAL,
)
from failover_engine.shared.providers.classifier import RateLimitClassifier
from failover_engine.shared.providers.cooldown import DEFAULT_COOLDOWN, CooldownController
from failover_engine.shared.providers.quota import UsageTracker
from failover_engine.shared.providers.registry import ProviderRegistry
from failover_engine.shared.providers.router import FailoverSelector
from failover_engine.shared.providers.types import (
    CooldownReason,
    EngineState,
    ErrorClassification,
    ErrorOutcome,
    EventKind,
    ProviderConfig,
    ProviderState,
    ProviderStatus,
    StatusReport,
)

logger = structlog.get_logger(__name__)

_Notification = tuple[EventKind, str, dict[str, Any]]

_MAX_LOGGED_ERROR_CHARS = 300


class RateLimitEngine:
    """Tracks provider usage and cooldowns, and routes around exhausted providers.

    All state lives on the instance; construct one per process and hand it
    to every call site.  One re-entrant lock serialises every
    read-check-write sequence.  State flushes run on a single writer
    thread and are awaited for at most ``flush_timeout`` seconds, so a
    slow disk degrades persistence, never routing.
    """

    def __init__(
        self,
        providers: Sequence[ProviderConfig],
        store: StateStorePort,
        *,
        notifier: NotificationPort | None = None,
        rate_limit_patterns: Iterable[str] | None = None,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        clock: Clock = utcnow,
        flush_timeout: float = 2.0,
        default_model: str | None = None,
    ) -> None:
        self._registry = ProviderRegistry(providers)
        self._store = store
        self._notifier = notifier
        self._classifier = RateLimitClassifier(rate_limit_patterns)
        self._clock = clock
        self._flush_timeout = flush_timeout
        self._default_model = default_model or None
        self._session_model: str | None = None

        self._lock = threading.RLock()
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="failover-state")
        self._closed = False
        self._pending_snapshot: EngineState | None = None
        self._queued_flush: Future[None] | None = None

        self._state = self._load_state(self._now(None))

        self._usage = UsageTracker(self._registry, self._state, lock=self._lock)
        self._cooldowns = CooldownController(self._state, cooldown=cooldown, lock=self._lock)
        self._selector = FailoverSelector(
            self._registry, self._cooldowns, self._usage, lock=self._lock
        )

    # ── Introspection ────────────────────────────────────────
    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def current_provider_id(self) -> str | None:
        with self._lock:
            return self._state.current_provider_id

    @property
    def rate_limit_patterns(self) -> tuple[str, ...]:
        return self._classifier.patterns

    def add_rate_limit_pattern(self, pattern: str) -> None:
        """Extend rate-limit detection at runtime."""
        self._classifier.add_pattern(pattern)
        logger.info("rate_limit_pattern_added", pattern=pattern)

    # ── Session lifecycle ────────────────────────────────────
    def on_session_start(self, model_id: str | None = None, now: datetime | None = None) -> str:
        """Pick the provider a new session should start on.

        Raises:
            UnsupportedModelError: no configured provider serves the model.
            NoProviderAvailableError: every candidate is cooling down or out of quota.
        """
        now = self._now(now)
        model = model_id or self._default_model or self._registry.default_model
        if not self._registry.providers_for(model):
            logger.error("unsupported_model", model=model)
            raise UnsupportedModelError(model)

        with self._lock:
            self._ensure_entries(now)
            selected = self._selector.get_best_provider(model, now)
            if selected is None:
                logger.warning("providers_exhausted", model=model, phase="session_start")
                raise NoProviderAvailableError(model)

            self._state.current_provider_id = selected
            self._session_model = model
            pending = self._submit_flush()

        self._await_flush(pending)
        logger.info("session_started", provider=selected, model=model)
        return selected

    def on_request_issued(self, provider_id: str, now: datetime | None = None) -> ProviderState:
        """Count a request; an exhausted quota starts a cooldown."""
        now = self._now(now)
        notifications: list[_Notification] = []

        with self._lock:
            state = self._usage.record_request(provider_id, now)
            if not self._usage.has_quota(provider_id, now):
                if self._start_cooldown(provider_id, now, CooldownReason.QUOTA_EXCEEDED):
                    notifications.append(self._cooldown_notification(provider_id, CooldownReason.QUOTA_EXCEEDED))
                state = self._state.providers[provider_id].copy()
            pending = self._submit_flush()

        PROVIDER_REQUESTS_TOTAL.labels(provider=provider_id).inc()
        self._await_flush(pending)
        self._emit(notifications)
        return state

    def on_error(
        self,
        provider_id: str,
        raw_error_text: str,
        model_id: str | None = None,
        now: datetime | None = None,
    ) -> str | ErrorOutcome:
        """Classify a provider error and fail over if it was a rate limit.

        Returns the replacement provider id, ``ErrorOutcome.NOT_RATE_LIMIT``
        when the text matched no pattern (the caller keeps its own error),
        or ``ErrorOutcome.ALL_PROVIDERS_EXHAUSTED``.
        """
        now = self._now(now)
        model = model_id or self._session_model or self._default_model or self._registry.default_model
        notifications: list[_Notification] = []

        with self._lock:
            self._registry.config(provider_id)
            self._state.providers[provider_id].error_count += 1

            pattern = self._classifier.match(raw_error_text)
            if pattern is None:
                pending = self._submit_flush()
                outcome: str | ErrorOutcome = ErrorOutcome.NOT_RATE_LIMIT
            else:
                logger.warning(
                    "rate_limit_detected",
                    provider=provider_id,
                    model=model,
                    pattern=pattern,
                    error=_truncate(raw_error_text),
                )
                if self._start_cooldown(provider_id, now, CooldownReason.RATE_LIMIT):
                    notifications.append(self._cooldown_notification(provider_id, CooldownReason.RATE_LIMIT))

                replacement = self._selector.select_provider(model, {provider_id}, now)
                if replacement is not None:
                    self._state.current_provider_id = replacement
                    outcome = replacement
                    notifications.append((
                        EventKind.PROVIDER_SWITCHED,
                        replacement,
                        {
                            "from_provider": provider_id,
                            "to_provider": replacement,
                            "reason": CooldownReason.RATE_LIMIT.value,
                            "model": model,
                        },
                    ))
                else:
                    outcome = ErrorOutcome.ALL_PROVIDERS_EXHAUSTED
                    notifications.append((
                        EventKind.PROVIDERS_EXHAUSTED,
                        provider_id,
                        {"model": model, "reason": CooldownReason.RATE_LIMIT.value},
                    ))
                pending = self._submit_flush()

        if pattern is None:
            PROVIDER_ERRORS_TOTAL.labels(
                provider=provider_id, classification=ErrorClassification.UNCLASSIFIED.value
            ).inc()
            logger.info(
                "unclassified_provider_error",
                provider=provider_id,
                error=_truncate(raw_error_text),
            )
        else:
            PROVIDER_ERRORS_TOTAL.labels(
                provider=provider_id, classification=ErrorClassification.RATE_LIMIT.value
            ).inc()
            if isinstance(outcome, ErrorOutcome):
                PROVIDERS_EXHAUSTED_TOTAL.labels(model=model).inc()
                logger.error("providers_exhausted", model=model, failed_provider=provider_id)
            else:
                PROVIDER_SWITCHES_TOTAL.labels(from_provider=provider_id, to_provider=outcome).inc()
                logger.warning(
                    "provider_switched",
                    from_provider=provider_id,
                    to_provider=outcome,
                    model=model,
                )

        self._await_flush(pending)
        self._emit(notifications)
        return outcome

    def on_idle_window(self, now: datetime | None = None) -> bool:
        """Apply due window resets and expired cooldowns for every provider.

        Writes only when something changed; returns whether it did.
        """
        now = self._now(now)
        with self._lock:
            changed = False
            for pid in self._registry.provider_ids:
                changed = self._usage.roll_windows(pid, now) or changed
            released = self._cooldowns.release_expired(now)
            changed = changed or bool(released)
            pending = self._submit_flush() if changed else None

        for pid in released:
            PROVIDER_AVAILABLE.labels(provider=pid).set(1)
        self._await_flush(pending)
        return changed

    # ── Status ───────────────────────────────────────────────
    def get_status_report(self, now: datetime | None = None) -> StatusReport:
        """Read-only snapshot of every provider at ``now``."""
        now = self._now(now)
        statuses: list[ProviderStatus] = []
        with self._lock:
            for pid in self._registry.provider_ids:
                cfg = self._registry.config(pid)
                st = self._state.providers[pid]
                hour, day = self._usage.effective_counts(pid, now)
                available = st.is_available(now)
                statuses.append(
                    ProviderStatus(
                        provider_id=pid,
                        available=available,
                        models=cfg.models,
                        priority=cfg.priority,
                        requests_hour=hour,
                        hourly_limit=cfg.hourly_limit,
                        requests_day=day,
                        daily_limit=cfg.daily_limit,
                        cooldown_until=None if available else st.cooldown_until,
                        cooldown_remaining_s=self._cooldowns.cooldown_remaining(pid, now),
                        error_count=st.error_count,
                    )
                )
            current = self._state.current_provider_id

        for status in statuses:
            PROVIDER_AVAILABLE.labels(provider=status.provider_id).set(1 if status.available else 0)
        return StatusReport(generated_at=now, current_provider_id=current, providers=tuple(statuses))

    # ── Admin ────────────────────────────────────────────────
    def reset_provider(self, provider_id: str, now: datetime | None = None) -> None:
        """Admin reset — clears cooldown and usage counters for a provider.

        ``error_count`` is diagnostic and survives the reset.
        """
        now = self._now(now)
        with self._lock:
            self._cooldowns.clear(provider_id)
            self._usage.reset(provider_id, now)
            pending = self._submit_flush()

        PROVIDER_AVAILABLE.labels(provider=provider_id).set(1)
        self._await_flush(pending)
        logger.info("provider_admin_reset", provider=provider_id)

    def close(self) -> None:
        """Wait for queued flushes and stop the writer thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._writer.shutdown(wait=True)

    def __enter__(self) -> RateLimitEngine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ── Internals ────────────────────────────────────────────
    def _now(self, now: datetime | None) -> datetime:
        return as_utc(now if now is not None else self._clock())

    def _load_state(self, now: datetime) -> EngineState:
        try:
            loaded = self._store.load()
        except PersistenceError as exc:
            logger.error("state_load_corrupt", error=exc.message, code=exc.code)
            loaded = None

        state = EngineState(model_priority=self._registry.model_priority())
        if loaded is not None:
            dropped = sorted(set(loaded.providers) - set(self._registry.provider_ids))
            if dropped:
                logger.info("state_providers_dropped", providers=dropped)
            state.providers = {
                pid: st for pid, st in loaded.providers.items() if pid in self._registry
            }
            if loaded.current_provider_id in self._registry:
                state.current_provider_id = loaded.current_provider_id

        for pid in self._registry.provider_ids:
            state.providers.setdefault(pid, ProviderState.fresh(now))
        return state

    def _ensure_entries(self, now: datetime) -> None:
        """Caller holds lock."""
        for pid in self._registry.provider_ids:
            self._state.providers.setdefault(pid, ProviderState.fresh(now))

    def _start_cooldown(self, provider_id: str, now: datetime, reason: CooldownReason) -> bool:
        """Caller holds lock."""
        started = self._cooldowns.mark_unavailable(provider_id, now, reason)
        if started:
            PROVIDER_COOLDOWNS_TOTAL.labels(provider=provider_id, reason=reason.value).inc()
            PROVIDER_AVAILABLE.labels(provider=provider_id).set(0)
        return started

    def _cooldown_notification(self, provider_id: str, reason: CooldownReason) -> _Notification:
        """Caller holds lock."""
        until = self._state.providers[provider_id].cooldown_until
        return (
            EventKind.COOLDOWN_STARTED,
            provider_id,
            {"reason": reason.value, "cooldown_until": until.isoformat() if until else None},
        )

    def _submit_flush(self) -> Future[None] | None:
        """Queue a snapshot for the writer thread. Caller holds lock.

        At most one write waits behind the running one; a newer snapshot
        replaces the waiting one instead of queueing another.
        """
        if self._closed:
            logger.debug("state_flush_skipped", reason="engine_closed")
            return None
        self._pending_snapshot = self._state.snapshot()
        if self._queued_flush is None:
            self._queued_flush = self._writer.submit(self._write_latest)
        return self._queued_flush

    def _write_latest(self) -> None:
        """Runs on the writer thread."""
        with self._lock:
            snapshot = self._pending_snapshot
            self._pending_snapshot = None
            self._queued_flush = None
        if snapshot is not None:
            self._store.save(snapshot)

    def _await_flush(self, pending: Future[None] | None) -> None:
        """Wait for a queued flush; failures never roll back memory."""
        if pending is None:
            return
        try:
            pending.result(timeout=self._flush_timeout)
        except concurrent.futures.TimeoutError:
            STATE_WRITE_FAILURES_TOTAL.labels(kind="timeout").inc()
            logger.warning("state_flush_timeout", timeout_s=self._flush_timeout)
        except PersistenceError as exc:
            STATE_WRITE_FAILURES_TOTAL.labels(kind="error").inc()
            logger.error("state_write_failed", error=exc.message, code=exc.code)
        except Exception as exc:
            STATE_WRITE_FAILURES_TOTAL.labels(kind="error").inc()
            logger.exception("state_write_failed", error=str(exc))

    def _emit(self, notifications: list[_Notification]) -> None:
        if self._notifier is None:
            return
        for kind, provider_id, detail in notifications:
            try:
                self._notifier.notify(kind, provider_id, detail)
            except Exception as exc:
                logger.warning(
                    "notification_failed",
                    kind=kind.value,
                    provider=provider_id,
                    error=str(exc),
                )


def _truncate(text: str | None) -> str:
    if not text:
        return ""
    if len(text) <= _MAX_LOGGED_ERROR_CHARS:
        return text
    return text[:_MAX_LOGGED_ERROR_CHARS] + "..."
