"""Outbound ports — interfaces that infrastructure adapters must implement.

The engine depends only on these abstractions, never on concrete storage
or notification mechanisms.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from failover_engine.shared.providers.types import EngineState, EventKind


class StateStorePort(ABC):
    """Durable storage for the engine snapshot."""

    @abstractmethod
    def load(self) -> EngineState | None:
        """Return the stored snapshot, or None if nothing was stored.

        Raises:
            StateLoadCorruptError: stored data exists but cannot be parsed.
        """

    @abstractmethod
    def save(self, state: EngineState) -> None:
        """Persist a snapshot.

        Raises:
            StateWriteFailedError: the write failed after retrying.
        """


class NotificationPort(ABC):
    """User-facing notifications (toasts, logs, host event bus)."""

    @abstractmethod
    def notify(self, event_kind: EventKind, provider_id: str, detail: dict[str, Any]) -> None: ...
