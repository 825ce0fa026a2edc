"""Domain-specific exception hierarchy.

All exceptions inherit from ``DomainError`` so callers can catch the entire
family in one clause while still discriminating on subclass.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all domain-layer errors."""

    def __init__(self, message: str, *, code: str = "DOMAIN_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


# ── Configuration ────────────────────────────────────────────
class ConfigurationError(DomainError):
    """Provider configuration is invalid."""

    def __init__(self, message: str, *, code: str = "CONFIGURATION_ERROR") -> None:
        super().__init__(message, code=code)


class UnsupportedModelError(ConfigurationError):
    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(
            f"No configured provider supports model {model_id!r}",
            code="UNSUPPORTED_MODEL",
        )


class UnknownProviderError(DomainError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider {provider_id!r} is not configured", code="UNKNOWN_PROVIDER")


# ── Routing ──────────────────────────────────────────────────
class NoProviderAvailableError(DomainError):
    """Every candidate for a model is cooling down or out of quota."""

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(
            f"No provider available for model {model_id!r}",
            code="NO_PROVIDER_AVAILABLE",
        )


# ── Persistence ──────────────────────────────────────────────
class PersistenceError(DomainError):
    """Base for state store failures. Contained by the engine."""


class StateLoadCorruptError(PersistenceError):
    def __init__(self, location: str, reason: str) -> None:
        super().__init__(
            f"State at {location} is unreadable: {reason}",
            code="PERSISTENCE_LOAD_CORRUPT",
        )


class StateWriteFailedError(PersistenceError):
    def __init__(self, location: str, reason: str) -> None:
        super().__init__(
            f"Could not write state to {location}: {reason}",
            code="PERSISTENCE_WRITE_FAILED",
        )
