"""Prometheus metrics for the failover engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge


# ── Usage metrics ────────────────────────────────────────────
PROVIDER_REQUESTS_TOTAL = Counter(
    "provider_requests_total",
    "Requests recorded against a provider",
    ["provider"],
)

PROVIDER_AVAILABLE = Gauge(
    "provider_available",
    "1 if the provider is currently selectable, 0 while cooling down",
    ["provider"],
)

# ── Error / failover metrics ─────────────────────────────────
PROVIDER_ERRORS_TOTAL = Counter(
    "provider_errors_total",
    "Provider errors reported to the engine",
    ["provider", "classification"],
)

PROVIDER_COOLDOWNS_TOTAL = Counter(
    "provider_cooldowns_total",
    "Cooldowns started",
    ["provider", "reason"],
)

PROVIDER_SWITCHES_TOTAL = Counter(
    "provider_switches_total",
    "Failover switches between providers",
    ["from_provider", "to_provider"],
)

PROVIDERS_EXHAUSTED_TOTAL = Counter(
    "providers_exhausted_total",
    "Failovers that found no viable provider",
    ["model"],
)

# ── Persistence metrics ──────────────────────────────────────
STATE_WRITE_FAILURES_TOTAL = Counter(
    "state_write_failures_total",
    "State flushes that failed or timed out",
    ["kind"],
)
