"""Delivery record sinks (storage backends)."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import duckdb

from .models import DeliveryRecord


class DeliverySink(Protocol):
    """A synchronous sink for delivery records.

    Sinks are intentionally synchronous because the recorder isolates blocking I/O
    in a background worker (thread) to keep the event loop unblocked.
    """

    def write(self, record: DeliveryRecord) -> None:
        """Persist a single record."""

    def summary(self) -> dict[str, int]:
        """Total records carried per `"<route>.<outcome>"`."""

    def close(self) -> None:
        """Close any underlying resources."""


def summary_key(route: str, outcome: str) -> str:
    return f"{route}.{outcome}"


class InMemoryDeliverySink:
    """In-memory sink for tests and local debugging."""

    def __init__(self) -> None:
        """Create an empty in-memory sink."""
        self._lock = threading.Lock()
        self._records: list[DeliveryRecord] = []

    def write(self, record: DeliveryRecord) -> None:
        """Append a record to the in-memory list (thread-safe)."""
        with self._lock:
            self._records.append(record)

    def close(self) -> None:  # noqa: D401 - keep interface consistent
        """No-op."""

    def summary(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for record in self.snapshot():
            key = summary_key(record.route, record.outcome)
            totals[key] = totals.get(key, 0) + record.count
        return totals

    def snapshot(self) -> Sequence[DeliveryRecord]:
        """Return a point-in-time copy of all recorded entries."""
        with self._lock:
            return list(self._records)


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    table: str = "delivery_records"


class DuckDBDeliverySink:
    """DuckDB sink for a local, queryable delivery log."""

    def __init__(self, *, path: str | Path, table: str = "delivery_records") -> None:
        """Create (or open) a DuckDB-backed sink at the given path."""
        self._opts = DuckDBOptions(path=Path(path), table=table)
        self._lock = threading.Lock()
        self._conn = duckdb.connect(str(self._opts.path))
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._opts.table} (
          logged_at timestamptz not null,
          occurred_at timestamptz not null,
          route varchar not null,
          outcome varchar not null,
          session_id varchar,
          platform varchar,
          count integer not null,
          status_code integer,
          error varchar
        )
        """
        with self._lock:
            self._conn.execute(create_sql)

    def write(self, record: DeliveryRecord) -> None:
        """Insert a single record into DuckDB."""
        insert_sql = f"""
        insert into {self._opts.table}
        (logged_at, occurred_at, route, outcome, session_id, platform, count, status_code, error)
        values (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        with self._lock:
            self._conn.execute(
                insert_sql,
                [
                    record.logged_at,
                    record.occurred_at,
                    record.route,
                    record.outcome,
                    record.session_id,
                    record.platform,
                    record.count,
                    record.status_code,
                    record.error,
                ],
            )

    def summary(self) -> dict[str, int]:
        """Aggregate the delivery log by route and outcome."""
        query = f"""
        select route, outcome, sum(count)
        from {self._opts.table}
        group by route, outcome
        """
        with self._lock:
            rows = self._conn.execute(query).fetchall()
        return {summary_key(route, outcome): int(total) for route, outcome, total in rows}

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            self._conn.close()
