"""Provider registry — static mapping of providers to models and priority.

Read-only after construction.  Priority collisions are allowed; ties keep
the order providers were configured in.
"""

from __future__ import annotations

from typing import Sequence

from failover_engine.domain.exceptions import ConfigurationError, UnknownProviderError
from failover_engine.shared.providers.types import ProviderConfig


class ProviderRegistry:
    """Answers "which models does X serve" and "who serves model Y, best first"."""

    def __init__(self, providers: Sequence[ProviderConfig]) -> None:
        if not providers:
            raise ConfigurationError("At least one provider must be configured")

        self._configs: dict[str, ProviderConfig] = {}
        for cfg in providers:
            if not cfg.provider_id:
                raise ConfigurationError("Provider id must not be empty")
            if cfg.provider_id in self._configs:
                raise ConfigurationError(f"Duplicate provider id {cfg.provider_id!r}")
            if not cfg.models:
                raise ConfigurationError(
                    f"Provider {cfg.provider_id!r} declares no models"
                )
            self._configs[cfg.provider_id] = cfg

        # sorted() is stable, so equal priorities keep configuration order
        ordered = sorted(self._configs.values(), key=lambda c: c.priority)
        self._by_model: dict[str, tuple[str, ...]] = {}
        for cfg in ordered:
            for model in dict.fromkeys(cfg.models):
                self._by_model[model] = self._by_model.get(model, ()) + (cfg.provider_id,)

    @property
    def provider_ids(self) -> tuple[str, ...]:
        """Provider ids in configuration order."""
        return tuple(self._configs)

    @property
    def default_model(self) -> str:
        """First model of the first configured provider."""
        first = next(iter(self._configs.values()))
        return first.models[0]

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._configs

    def config(self, provider_id: str) -> ProviderConfig:
        try:
            return self._configs[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    def models_for(self, provider_id: str) -> frozenset[str]:
        return frozenset(self.config(provider_id).models)

    def providers_for(self, model_id: str) -> tuple[str, ...]:
        return self._by_model.get(model_id, ())

    def model_priority(self) -> dict[str, list[str]]:
        return {model: list(ids) for model, ids in self._by_model.items()}
