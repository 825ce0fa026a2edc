"""Cooldown controller — keeps rate-limited providers out of rotation.

State machine per provider:
    AVAILABLE    → (rate limit or exhausted quota) → COOLING_DOWN
    COOLING_DOWN → (now >= cooldown_until)         → AVAILABLE

The return transition is evaluated lazily on every query.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta

import structlog

from failover_engine.domain.exceptions import UnknownProviderError
from failover_engine.shared.providers.types import CooldownReason, EngineState, ProviderState

logger = structlog.get_logger(__name__)

DEFAULT_COOLDOWN = timedelta(hours=1)


class CooldownController:
    """Per-provider availability with first-trigger-wins cooldowns."""

    def __init__(
        self,
        state: EngineState,
        *,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        lock: threading.RLock | None = None,
    ) -> None:
        if cooldown <= timedelta(0):
            raise ValueError("cooldown must be positive")
        self._state = state
        self._cooldown = cooldown
        self._lock = lock or threading.RLock()

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    def is_available(self, provider_id: str, now: datetime) -> bool:
        with self._lock:
            return self._provider_state(provider_id).is_available(now)

    def mark_unavailable(
        self,
        provider_id: str,
        now: datetime,
        reason: CooldownReason,
    ) -> bool:
        """Start a cooldown unless one is already running.

        Returns True when the provider actually transitioned.
        """
        with self._lock:
            st = self._provider_state(provider_id)
            if not st.is_available(now):
                logger.debug(
                    "provider_cooldown_already_active",
                    provider=provider_id,
                    reason=reason.value,
                    cooldown_until=st.cooldown_until.isoformat() if st.cooldown_until else None,
                )
                return False

            st.cooldown_until = now + self._cooldown
            logger.warning(
                "provider_cooldown_started",
                provider=provider_id,
                reason=reason.value,
                cooldown_until=st.cooldown_until.isoformat(),
                cooldown_s=self._cooldown.total_seconds(),
            )
            return True

    def cooldown_remaining(self, provider_id: str, now: datetime) -> float:
        """Seconds until the provider is available again (0 if available)."""
        with self._lock:
            until = self._provider_state(provider_id).cooldown_until
            if until is None or until <= now:
                return 0.0
            return (until - now).total_seconds()

    def release_expired(self, now: datetime) -> list[str]:
        """Clear elapsed cooldowns; returns the ids that were released."""
        released: list[str] = []
        with self._lock:
            for pid, st in self._state.providers.items():
                if st.cooldown_until is not None and st.cooldown_until <= now:
                    st.cooldown_until = None
                    released.append(pid)
                    logger.info("provider_cooldown_expired", provider=pid)
        return released

    def clear(self, provider_id: str) -> None:
        """Force the provider back to AVAILABLE (for admin override)."""
        with self._lock:
            self._provider_state(provider_id).cooldown_until = None

    def _provider_state(self, provider_id: str) -> ProviderState:
        """Caller holds lock."""
        try:
            return self._state.providers[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None
