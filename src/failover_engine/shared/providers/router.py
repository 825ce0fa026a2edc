"""Failover selector — picks the best viable provider for a model.

Filters out excluded, cooling-down, and quota-exhausted providers, then
takes the first remaining candidate in registry priority order.  Selection
never mutates state, so a fixed snapshot and ``now`` always give the same
answer.
"""

from __future__ import annotations

import threading
from collections.abc import Collection
from datetime import datetime

import structlog

from failover_engine.shared.providers.cooldown import CooldownController
from failover_engine.shared.providers.quota import UsageTracker
from failover_engine.shared.providers.registry import ProviderRegistry

logger = structlog.get_logger(__name__)


class FailoverSelector:
    """Selects providers by priority among those that can take traffic."""

    def __init__(
        self,
        registry: ProviderRegistry,
        cooldowns: CooldownController,
        usage: UsageTracker,
        *,
        lock: threading.RLock | None = None,
    ) -> None:
        self._registry = registry
        self._cooldowns = cooldowns
        self._usage = usage
        self._lock = lock or threading.RLock()

    def select_provider(
        self,
        model_id: str,
        exclude: Collection[str] | None,
        now: datetime,
    ) -> str | None:
        """Best viable provider for ``model_id``, or None."""
        exclude = exclude or ()
        with self._lock:
            for pid in self._registry.providers_for(model_id):
                if self._is_viable(pid, exclude, now):
                    return pid

        logger.debug(
            "no_available_providers",
            model=model_id,
            excluded=sorted(exclude),
            configured=len(self._registry.providers_for(model_id)),
        )
        return None

    def get_best_provider(self, model_id: str, now: datetime) -> str | None:
        return self.select_provider(model_id, (), now)

    def fallback_chain(
        self,
        model_id: str,
        exclude: Collection[str] | None,
        now: datetime,
    ) -> list[str]:
        """All viable providers for ``model_id`` in priority order."""
        exclude = exclude or ()
        with self._lock:
            return [
                pid
                for pid in self._registry.providers_for(model_id)
                if self._is_viable(pid, exclude, now)
            ]

    # ── Filtering ────────────────────────────────────────────
    def _is_viable(self, pid: str, exclude: Collection[str], now: datetime) -> bool:
        if pid in exclude:
            return False

        if not self._cooldowns.is_available(pid, now):
            logger.debug("provider_cooling_down", provider=pid)
            return False

        if not self._usage.has_quota(pid, now):
            logger.debug("provider_quota_exhausted", provider=pid)
            return False

        return True
