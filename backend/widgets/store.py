from __future__ import annotations

import json
import logging
from datetime import datetime
from threading import RLock
from typing import TYPE_CHECKING, Callable, Optional, Protocol
from uuid import uuid4

from backend.widgets.models import (
    BBSState,
    CounterState,
    LikeState,
    RankingState,
    WidgetKind,
    WidgetState,
    utc_now,
)
from backend.widgets.ownership import authorize, hash_token, public_id, require_token_shape
from backend.widgets.results import EngineResult, ErrorKind, WidgetOperationError

if TYPE_CHECKING:
    from backend.widgets.observability import MetricsRegistry

logger = logging.getLogger("widgets.store")

STATE_MODELS: dict[WidgetKind, type[WidgetState]] = {
    WidgetKind.counter: CounterState,
    WidgetKind.like: LikeState,
    WidgetKind.ranking: RankingState,
    WidgetKind.bbs: BBSState,
}

StateBuilder = Callable[[str, str, str, datetime], WidgetState]
Operation = Callable[[WidgetState], EngineResult]


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


def state_key(kind: WidgetKind, widget_id: str) -> str:
    return f"{kind.value}:{widget_id}"


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


class StateBackend(Protocol):
    """Narrow storage interface: read with a revision, write conditioned on it."""

    def get(self, key: str) -> Optional[tuple[dict, int]]:
        ...

    def put(self, key: str, payload: dict, expected_revision: Optional[int]) -> int:
        """Write ``payload``; ``expected_revision=None`` means create-if-absent.

        Raises ``StoreConflictError`` when the stored revision moved on.
        """
        ...

    def delete(self, key: str, expected_revision: Optional[int]) -> bool:
        ...

    def ping(self) -> bool:
        ...


class InMemoryStateBackend:
    def __init__(self) -> None:
        self._lock = RLock()
        self._records: dict[str, tuple[str, int]] = {}

    def get(self, key: str) -> Optional[tuple[dict, int]]:
        with self._lock:
            record = self._records.get(key)
        if record is None:
            return None
        serialized, revision = record
        return json.loads(serialized), revision

    def put(self, key: str, payload: dict, expected_revision: Optional[int]) -> int:
        serialized = json.dumps(payload)
        with self._lock:
            current = self._records.get(key)
            if expected_revision is None:
                if current is not None:
                    raise StoreConflictError(f"state already exists: {key}")
                revision = 1
            else:
                if current is None or current[1] != expected_revision:
                    raise StoreConflictError(f"stale revision for {key}: {expected_revision}")
                revision = expected_revision + 1
            self._records[key] = (serialized, revision)
            return revision

    def delete(self, key: str, expected_revision: Optional[int]) -> bool:
        with self._lock:
            current = self._records.get(key)
            if current is None:
                return False
            if expected_revision is not None and current[1] != expected_revision:
                raise StoreConflictError(f"stale revision for {key}: {expected_revision}")
            del self._records[key]
            return True

    def ping(self) -> bool:
        return True


class WidgetStore:
    """Runs engine operations as optimistic read-modify-write cycles."""

    def __init__(
        self,
        backend: StateBackend,
        *,
        max_retries: int = 8,
        metrics: Optional["MetricsRegistry"] = None,
    ) -> None:
        self.backend = backend
        self.max_retries = max(1, max_retries)
        self.metrics = metrics

    def _read(self, kind: WidgetKind, widget_id: str) -> Optional[tuple[WidgetState, int]]:
        loaded = self.backend.get(state_key(kind, widget_id))
        if loaded is None:
            return None
        payload, revision = loaded
        return STATE_MODELS[kind].model_validate(payload), revision

    def _record_conflict(self, kind: WidgetKind, key: str, attempt: int) -> None:
        logger.info("occ_conflict key=%s attempt=%s", key, attempt)
        if self.metrics:
            self.metrics.record_conflict(widget=kind.value)

    def load(self, kind: WidgetKind, widget_id: str) -> WidgetState:
        loaded = self._read(kind, widget_id)
        if loaded is None:
            raise StoreNotFoundError(f"{kind.value} not found: {widget_id}")
        return loaded[0]

    def load_by_url(self, kind: WidgetKind, url: str) -> WidgetState:
        return self.load(kind, public_id(url))

    def create(
        self,
        kind: WidgetKind,
        url: str,
        token: str,
        build: StateBuilder,
        *,
        now: Optional[datetime] = None,
    ) -> tuple[WidgetState, bool]:
        """Create the widget for ``url`` or return the existing one to its owner."""
        require_token_shape(token)
        widget_id = public_id(url)
        key = state_key(kind, widget_id)
        for attempt in range(1, self.max_retries + 1):
            loaded = self._read(kind, widget_id)
            if loaded is not None:
                existing = loaded[0]
                if not authorize(token, existing.owner_token_hash):
                    raise WidgetOperationError(
                        ErrorKind.unauthorized, "invalid token for this url"
                    )
                return existing, False

            state = build(widget_id, url, hash_token(token), now or utc_now())
            try:
                self.backend.put(key, state.model_dump(mode="json"), None)
            except StoreConflictError:
                self._record_conflict(kind, key, attempt)
                continue
            logger.info("widget_created kind=%s id=%s", kind.value, widget_id)
            return state, True
        raise StoreConflictError(f"could not create {key} after {self.max_retries} attempts")

    def transact(
        self, kind: WidgetKind, widget_id: str, operation: Operation
    ) -> EngineResult:
        key = state_key(kind, widget_id)
        for attempt in range(1, self.max_retries + 1):
            loaded = self._read(kind, widget_id)
            if loaded is None:
                raise StoreNotFoundError(f"{kind.value} not found: {widget_id}")
            state, revision = loaded

            result = operation(state)
            if not result.ok:
                raise WidgetOperationError(result.error, result.detail or result.error.value)
            if not result.changed:
                return result

            try:
                self.backend.put(key, result.state.model_dump(mode="json"), revision)
            except StoreConflictError:
                self._record_conflict(kind, key, attempt)
                continue
            return result
        raise StoreConflictError(f"gave up on {key} after {self.max_retries} attempts")

    def delete(self, kind: WidgetKind, url: str, token: str) -> str:
        widget_id = public_id(url)
        key = state_key(kind, widget_id)
        for attempt in range(1, self.max_retries + 1):
            loaded = self._read(kind, widget_id)
            if loaded is None:
                raise StoreNotFoundError(f"{kind.value} not found: {widget_id}")
            state, revision = loaded
            if not authorize(token, state.owner_token_hash):
                raise WidgetOperationError(ErrorKind.unauthorized, "invalid owner token")
            try:
                self.backend.delete(key, revision)
            except StoreConflictError:
                self._record_conflict(kind, key, attempt)
                continue
            logger.info("widget_deleted kind=%s id=%s", kind.value, widget_id)
            return widget_id
        raise StoreConflictError(f"gave up on {key} after {self.max_retries} attempts")

    def purge(self, kind: WidgetKind, widget_id: str) -> bool:
        removed = self.backend.delete(state_key(kind, widget_id), None)
        logger.info("widget_purged kind=%s id=%s removed=%s", kind.value, widget_id, removed)
        return removed
