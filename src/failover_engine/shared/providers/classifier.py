"""Rate-limit classifier — matches raw provider error text against patterns.

Patterns are data: an ordered, user-extensible list of case-insensitive
regular expressions.  A pattern that does not compile is matched as a
literal substring instead.
"""

from __future__ import annotations

import re
import threading
from typing import Iterable

import structlog

from failover_engine.shared.providers.types import ErrorClassification

logger = structlog.get_logger(__name__)

DEFAULT_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    r"rate[ _-]?limit",
    r"too many requests",
    r"\b429\b",
    r"quota[ _]exceeded",
    r"resource[ _]exhausted",
    r"usage limit",
)


class RateLimitClassifier:
    """Ordered list of compiled rate-limit matchers."""

    def __init__(self, patterns: Iterable[str] | None = None) -> None:
        self._lock = threading.Lock()
        self._compiled: list[tuple[str, re.Pattern[str]]] = []
        for pattern in DEFAULT_RATE_LIMIT_PATTERNS if patterns is None else patterns:
            self.add_pattern(pattern)

    @property
    def patterns(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(p for p, _ in self._compiled)

    def add_pattern(self, pattern: str) -> None:
        """Append a matcher; duplicates and blank patterns are ignored."""
        pattern = pattern.strip()
        if not pattern:
            return
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            logger.warning("rate_limit_pattern_literal", pattern=pattern, error=str(exc))
            compiled = re.compile(re.escape(pattern), re.IGNORECASE)
        with self._lock:
            if any(p == pattern for p, _ in self._compiled):
                return
            self._compiled.append((pattern, compiled))

    def match(self, text: str | None) -> str | None:
        """Return the first pattern that matches ``text``, if any."""
        if not text:
            return None
        with self._lock:
            for pattern, compiled in self._compiled:
                if compiled.search(text):
                    return pattern
        return None

    def classify(self, text: str | None) -> ErrorClassification:
        if self.match(text) is not None:
            return ErrorClassification.RATE_LIMIT
        return ErrorClassification.UNCLASSIFIED
