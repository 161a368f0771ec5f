from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.widgets.models import utc_now
from backend.widgets.store import StoreConflictError


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class SqlStateBackend:
    """
    Widget state rows with a revision column. Writes are conditional updates,
    so several processes can share one SQLite or PostgreSQL database.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.widget_states = Table(
            "widget_states",
            self.metadata,
            Column("key", String(255), primary_key=True),
            Column("revision", Integer, nullable=False),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def get(self, key: str) -> Optional[tuple[dict, int]]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(self.widget_states.c.payload_json, self.widget_states.c.revision).where(
                    self.widget_states.c.key == key
                )
            ).first()
        if not row:
            return None
        return json.loads(row.payload_json), row.revision

    def put(self, key: str, payload: dict, expected_revision: Optional[int]) -> int:
        serialized = json.dumps(payload)
        now = utc_now()
        # the lock only serialises this process; the revision check guards the rest
        with self._lock:
            with self.engine.begin() as conn:
                if expected_revision is None:
                    try:
                        conn.execute(
                            self.widget_states.insert().values(
                                key=key,
                                revision=1,
                                payload_json=serialized,
                                updated_at_utc=now,
                            )
                        )
                    except IntegrityError as exc:
                        raise StoreConflictError(f"state already exists: {key}") from exc
                    return 1

                result = conn.execute(
                    self.widget_states.update()
                    .where(self.widget_states.c.key == key)
                    .where(self.widget_states.c.revision == expected_revision)
                    .values(
                        revision=expected_revision + 1,
                        payload_json=serialized,
                        updated_at_utc=now,
                    )
                )
                if result.rowcount != 1:
                    raise StoreConflictError(f"stale revision for {key}: {expected_revision}")
                return expected_revision + 1

    def delete(self, key: str, expected_revision: Optional[int]) -> bool:
        with self._lock:
            with self.engine.begin() as conn:
                statement = self.widget_states.delete().where(self.widget_states.c.key == key)
                if expected_revision is not None:
                    statement = statement.where(self.widget_states.c.revision == expected_revision)
                result = conn.execute(statement)
                if result.rowcount == 1:
                    return True
                if expected_revision is None:
                    return False
                exists = conn.execute(
                    select(self.widget_states.c.key).where(self.widget_states.c.key == key)
                ).first()
        if exists:
            raise StoreConflictError(f"stale revision for {key}: {expected_revision}")
        return False
