"""Usage tracker — hourly and daily request counters per provider.

Windows are anchored at the first request after the previous window
elapsed, and reset lazily: nothing runs in the background, every read
accounts for resets that *would* happen at the supplied ``now``.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

import structlog

from failover_engine.domain.exceptions import UnknownProviderError
from failover_engine.shared.providers.registry import ProviderRegistry
from failover_engine.shared.providers.types import EngineState, ProviderState

logger = structlog.get_logger(__name__)

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


class UsageTracker:
    """Per-provider hour/day request counters with lazy window resets."""

    def __init__(
        self,
        registry: ProviderRegistry,
        state: EngineState,
        *,
        lock: threading.RLock | None = None,
    ) -> None:
        self._registry = registry
        self._state = state
        self._lock = lock or threading.RLock()

    def record_request(self, provider_id: str, now: datetime) -> ProviderState:
        """Count one request, rolling any elapsed window first.

        Counters are clamped at their limit; the caller uses ``has_quota``
        to turn an exhausted quota into a cooldown.
        """
        cfg = self._registry.config(provider_id)
        with self._lock:
            st = self._provider_state(provider_id)
            self._roll(provider_id, st, now)

            if cfg.hourly_unlimited or st.request_count_hour < cfg.hourly_limit:
                st.request_count_hour += 1
            else:
                logger.warning(
                    "quota_exhausted",
                    provider=provider_id,
                    window="hour",
                    limit=cfg.hourly_limit,
                )

            if cfg.daily_unlimited or st.request_count_day < cfg.daily_limit:
                st.request_count_day += 1
            else:
                logger.warning(
                    "quota_exhausted",
                    provider=provider_id,
                    window="day",
                    limit=cfg.daily_limit,
                )

            return st.copy()

    def has_quota(self, provider_id: str, now: datetime) -> bool:
        """True if another request fits in both windows at ``now``. Pure."""
        cfg = self._registry.config(provider_id)
        hour, day = self.effective_counts(provider_id, now)
        if not cfg.hourly_unlimited and hour >= cfg.hourly_limit:
            return False
        if not cfg.daily_unlimited and day >= cfg.daily_limit:
            return False
        return True

    def effective_counts(self, provider_id: str, now: datetime) -> tuple[int, int]:
        """(hour, day) counts as they would read after any due reset."""
        with self._lock:
            st = self._provider_state(provider_id)
            hour = 0 if now >= st.window_start_hour + HOUR else st.request_count_hour
            day = 0 if now >= st.window_start_day + DAY else st.request_count_day
            return hour, day

    def roll_windows(self, provider_id: str, now: datetime) -> bool:
        """Apply due window resets; True only if a counter changed."""
        with self._lock:
            return self._roll(provider_id, self._provider_state(provider_id), now)

    def reset(self, provider_id: str, now: datetime) -> None:
        """Force-reset both windows (for admin override)."""
        with self._lock:
            st = self._provider_state(provider_id)
            st.request_count_hour = 0
            st.request_count_day = 0
            st.window_start_hour = now
            st.window_start_day = now

    # ── Internals ────────────────────────────────────────────
    def _provider_state(self, provider_id: str) -> ProviderState:
        """Caller holds lock."""
        try:
            return self._state.providers[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    def _roll(self, provider_id: str, st: ProviderState, now: datetime) -> bool:
        """Caller holds lock."""
        changed = False
        if now >= st.window_start_hour + HOUR:
            changed = changed or st.request_count_hour > 0
            if st.request_count_hour:
                logger.debug(
                    "usage_window_reset",
                    provider=provider_id,
                    window="hour",
                    previous_count=st.request_count_hour,
                )
            st.request_count_hour = 0
            st.window_start_hour = now
        if now >= st.window_start_day + DAY:
            changed = changed or st.request_count_day > 0
            if st.request_count_day:
                logger.debug(
                    "usage_window_reset",
                    provider=provider_id,
                    window="day",
                    previous_count=st.request_count_day,
                )
            st.request_count_day = 0
            st.window_start_day = now
        return changed
