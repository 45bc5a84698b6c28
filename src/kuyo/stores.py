"""Session stores (persistence backends for the session record)."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import duckdb
import structlog
from pydantic import ValidationError

from .models import Session

logger = structlog.get_logger(__name__)

SESSION_STORAGE_NAME = "kuyo_session"


class SessionStore(Protocol):
    """A synchronous store holding at most one session record."""

    def load(self) -> Session | None:
        """Return the persisted session, or None when absent."""

    def save(self, session: Session) -> None:
        """Persist the session, replacing any previous record."""

    def clear(self) -> None:
        """Remove the persisted record."""

    def close(self) -> None:
        """Close any underlying resources."""


class InMemorySessionStore:
    """Process-scoped store for tests and short-lived processes."""

    def __init__(self) -> None:
        """Create an empty in-memory store."""
        self._lock = threading.Lock()
        self._payload: str | None = None

    def load(self) -> Session | None:
        with self._lock:
            payload = self._payload
        if payload is None:
            return None
        return Session.model_validate_json(payload)

    def save(self, session: Session) -> None:
        with self._lock:
            self._payload = session.model_dump_json(by_alias=True)

    def clear(self) -> None:
        with self._lock:
            self._payload = None

    def close(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""


@dataclass(frozen=True)
class DuckDBStoreOptions:
    path: Path
    table: str = "kuyo_sessions"
    storage_name: str = SESSION_STORAGE_NAME


class DuckDBSessionStore:
    """DuckDB store so a restarted process reuses the same session.

    The record lives in a single row keyed by the fixed storage name.
    """

    def __init__(
        self,
        *,
        path: str | Path,
        table: str = "kuyo_sessions",
        storage_name: str = SESSION_STORAGE_NAME,
    ) -> None:
        """Create (or open) a DuckDB-backed store at the given path."""
        self._opts = DuckDBStoreOptions(path=Path(path), table=table, storage_name=storage_name)
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(self._opts.path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._opts.table} (
          storage_name varchar primary key,
          payload_json varchar not null
        )
        """
        with self._lock:
            self._conn.execute(create_sql)

    def load(self) -> Session | None:
        """Load the stored session; a corrupt row is discarded."""
        with self._lock:
            row = self._conn.execute(
                f"select payload_json from {self._opts.table} where storage_name = ?",
                [self._opts.storage_name],
            ).fetchone()
        if row is None:
            return None
        try:
            return Session.model_validate_json(row[0])
        except ValidationError as exc:
            logger.warning("Discarding unreadable persisted session", error=str(exc))
            self.clear()
            return None

    def save(self, session: Session) -> None:
        payload = session.model_dump_json(by_alias=True)
        with self._lock:
            self._conn.execute(
                f"delete from {self._opts.table} where storage_name = ?",
                [self._opts.storage_name],
            )
            self._conn.execute(
                f"insert into {self._opts.table} (storage_name, payload_json) values (?, ?)",
                [self._opts.storage_name, payload],
            )

    def clear(self) -> None:
        with self._lock:
            self._conn.execute(
                f"delete from {self._opts.table} where storage_name = ?",
                [self._opts.storage_name],
            )

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()
