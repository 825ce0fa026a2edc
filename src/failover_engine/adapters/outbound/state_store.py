"""State store adapters — JSON file on disk and an in-memory variant.

The on-disk document is forward compatible: unknown fields are ignored,
missing or malformed side fields take defaults, and a provider entry that
fails validation is dropped rather than poisoning the whole load.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt

from failover_engine.domain.exceptions import StateLoadCorruptError, StateWriteFailedError
from failover_engine.ports.outbound import StateStorePort
from failover_engine.shared.clock import Clock, as_utc, utcnow
from failover_engine.shared.providers.types import EngineState, ProviderState

logger = structlog.get_logger(__name__)

STATE_VERSION = 1


# ═══════════════════════════════════════════════════════════════
#  Document schema
# ═══════════════════════════════════════════════════════════════
class ProviderStateRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    request_count_hour: int = Field(0, ge=0)
    request_count_day: int = Field(0, ge=0)
    window_start_hour: datetime | None = None
    window_start_day: datetime | None = None
    cooldown_until: datetime | None = None
    error_count: int = Field(0, ge=0)


class StateDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int = STATE_VERSION
    current_provider_id: str | None = None
    providers: dict[str, Any] = Field(default_factory=dict)
    model_priority: dict[str, list[str]] = Field(default_factory=dict)
    saved_at: datetime | None = None

    @field_validator("version", "current_provider_id", "saved_at", mode="wrap")
    @classmethod
    def _default_when_invalid(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        try:
            return handler(value)
        except ValidationError as exc:
            logger.warning("state_field_reset", field=info.field_name, errors=exc.error_count())
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)

    @field_validator("model_priority", mode="wrap")
    @classmethod
    def _drop_invalid_priorities(
        cls, value: Any, handler: ValidatorFunctionWrapHandler
    ) -> dict[str, list[str]]:
        if not isinstance(value, dict):
            logger.warning("state_field_reset", field="model_priority")
            return {}
        kept: dict[str, list[str]] = {}
        for model, provider_ids in value.items():
            try:
                kept.update(handler({model: provider_ids}))
            except ValidationError:
                logger.warning("state_entry_skipped", model=model)
        return kept


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "state_write_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


# One retry for transient filesystem errors
_write_retry = retry(
    stop=stop_after_attempt(2),
    retry=retry_if_exception_type(OSError),
    before_sleep=_log_retry,
    reraise=True,
)


# ═══════════════════════════════════════════════════════════════
#  Conversion
# ═══════════════════════════════════════════════════════════════
def state_to_document(state: EngineState, *, saved_at: datetime) -> StateDocument:
    return StateDocument(
        current_provider_id=state.current_provider_id,
        providers={
            pid: ProviderStateRecord(
                request_count_hour=st.request_count_hour,
                request_count_day=st.request_count_day,
                window_start_hour=st.window_start_hour,
                window_start_day=st.window_start_day,
                cooldown_until=st.cooldown_until,
                error_count=st.error_count,
            ).model_dump(mode="json")
            for pid, st in state.providers.items()
        },
        model_priority=state.model_priority,
        saved_at=saved_at,
    )


def document_to_state(doc: StateDocument, *, now: datetime) -> EngineState:
    providers: dict[str, ProviderState] = {}
    for pid, raw in doc.providers.items():
        try:
            record = ProviderStateRecord.model_validate(raw)
        except ValidationError as exc:
            logger.warning("state_entry_skipped", provider=pid, errors=exc.error_count())
            continue
        providers[pid] = ProviderState(
            request_count_hour=record.request_count_hour,
            request_count_day=record.request_count_day,
            window_start_hour=as_utc(record.window_start_hour or now),
            window_start_day=as_utc(record.window_start_day or now),
            cooldown_until=as_utc(record.cooldown_until) if record.cooldown_until else None,
            error_count=record.error_count,
        )
    return EngineState(
        providers=providers,
        current_provider_id=doc.current_provider_id,
        model_priority=doc.model_priority,
    )


# ═══════════════════════════════════════════════════════════════
#  Adapters
# ═══════════════════════════════════════════════════════════════
class JsonFileStateStore(StateStorePort):
    """Snapshot persisted as a JSON document with atomic replace."""

    def __init__(self, path: str | Path, *, clock: Clock = utcnow) -> None:
        self._path = Path(path).expanduser()
        self._clock = clock

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> EngineState | None:
        if not self._path.exists():
            return None

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as exc:
            raise StateLoadCorruptError(str(self._path), str(exc)) from exc

        if not isinstance(raw, dict):
            raise StateLoadCorruptError(str(self._path), "document is not an object")

        try:
            doc = StateDocument.model_validate(raw)
        except ValidationError as exc:
            raise StateLoadCorruptError(str(self._path), str(exc)) from exc

        state = document_to_state(doc, now=self._clock())
        logger.info(
            "state_loaded",
            path=str(self._path),
            providers=len(state.providers),
            current_provider=state.current_provider_id,
        )
        return state

    def save(self, state: EngineState) -> None:
        payload = state_to_document(state, saved_at=self._clock()).model_dump_json(indent=2)
        try:
            self._write(payload)
        except OSError as exc:
            raise StateWriteFailedError(str(self._path), str(exc)) from exc

    @_write_retry
    def _write(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise


class InMemoryStateStore(StateStorePort):
    """Keeps the last snapshot in process memory."""

    def __init__(self, initial: EngineState | None = None) -> None:
        self._lock = threading.Lock()
        self._state = initial.snapshot() if initial else None

    def load(self) -> EngineState | None:
        with self._lock:
            return self._state.snapshot() if self._state else None

    def save(self, state: EngineState) -> None:
        with self._lock:
            self._state = state.snapshot()
