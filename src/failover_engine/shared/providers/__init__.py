"""Provider failover engine.

Provides usage tracking, cooldowns, rate-limit classification, and
priority failover across interchangeable model providers. The
RateLimitEngine facade lives in ``shared.providers.engine``.
"""

from failover_engine.shared.providers.classifier import RateLimitClassifier
from failover_engine.shared.providers.cooldown import CooldownController
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

__all__ = [
    "CooldownController",
    "CooldownReason",
    "EngineState",
    "ErrorClassification",
    "ErrorOutcome",
    "EventKind",
    "FailoverSelector",
    "ProviderConfig",
    "ProviderRegistry",
    "ProviderState",
    "ProviderStatus",
    "RateLimitClassifier",
    "StatusReport",
    "UsageTracker",
]
