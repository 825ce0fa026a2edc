"""Notification sinks for provider switch / exhaustion events.

Provides a structlog-backed sink and a small in-process bus that fans
events out to host-registered handlers.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

import structlog

from failover_engine.ports.outbound import NotificationPort
from failover_engine.shared.clock import utcnow
from failover_engine.shared.providers.types import EventKind

logger = structlog.get_logger(__name__)

ALL_EVENTS = "*"


@dataclass(frozen=True, slots=True)
class ProviderEvent:
    """A notification as delivered to bus handlers."""

    event_kind: EventKind
    provider_id: str
    detail: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


EventHandler = Callable[[ProviderEvent], None]


class LogNotificationSink(NotificationPort):
    """Writes every notification to the structured log."""

    def notify(self, event_kind: EventKind, provider_id: str, detail: dict[str, Any]) -> None:
        logger.info("provider_notification", kind=event_kind.value, provider=provider_id, **detail)


class InProcessNotificationBus(NotificationPort):
    """Synchronous fan-out to handlers subscribed per event kind."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_kind: EventKind | str, handler: EventHandler) -> None:
        key = event_kind.value if isinstance(event_kind, EventKind) else event_kind
        with self._lock:
            self._handlers[key].append(handler)
        logger.debug("notification_handler_registered", kind=key)

    def notify(self, event_kind: EventKind, provider_id: str, detail: dict[str, Any]) -> None:
        event = ProviderEvent(event_kind=event_kind, provider_id=provider_id, detail=dict(detail))
        with self._lock:
            handlers = [*self._handlers.get(event_kind.value, []), *self._handlers.get(ALL_EVENTS, [])]

        if not handlers:
            logger.debug("notification_no_handlers", kind=event_kind.value)
            return

        # A failing handler must not starve the others
        for i, handler in enumerate(handlers):
            try:
                handler(event)
            except Exception as exc:
                logger.error(
                    "notification_handler_error",
                    kind=event_kind.value,
                    handler_index=i,
                    error=str(exc),
                )
