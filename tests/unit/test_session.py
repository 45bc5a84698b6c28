from __future__ import annotations

import re
from pathlib import Path

from kuyo.models import Session
from kuyo.session import SessionManager, _to_base36, generate_session_id
from kuyo.stores import DuckDBSessionStore, InMemorySessionStore

SESSION_ID_RE = re.compile(r"^kuyo_[0-9a-z]+_[0-9a-z]+$")


def _make_manager(store: InMemorySessionStore | DuckDBSessionStore | None = None) -> SessionManager:
    return SessionManager(
        store or InMemorySessionStore(),
        environment="development",
        user_agent="test-agent",
        ip_address="10.0.0.1",
    )


def test_to_base36() -> None:
    assert _to_base36(0) == "0"
    assert _to_base36(35) == "z"
    assert _to_base36(36) == "10"


def test_generate_session_id_format_and_uniqueness() -> None:
    ids = {generate_session_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(SESSION_ID_RE.match(sid) for sid in ids)


def test_current_session_is_created_once_and_reused() -> None:
    store = InMemorySessionStore()
    manager = _make_manager(store)

    first = manager.current_session()
    second = manager.current_session()

    assert first is second
    assert SESSION_ID_RE.match(first.id)
    assert first.environment == "development"
    assert first.user_agent == "test-agent"
    assert first.ip_address == "10.0.0.1"
    assert first.ended_at is None
    assert first.duration is None
    assert store.load() == first


def test_current_session_resumes_persisted_record() -> None:
    store = InMemorySessionStore()
    existing = Session(
        id="kuyo_persisted_1",
        environment="production",
        started_at=1_700_000_000_000,
        user_agent="ua",
        ip_address="127.0.0.1",
    )
    store.save(existing)

    assert _make_manager(store).current_session() == existing


def test_end_session_stamps_duration_and_clears_store() -> None:
    store = InMemorySessionStore()
    manager = _make_manager(store)
    started = manager.current_session()

    ended = manager.end_session()

    assert ended is not None
    assert ended.id == started.id
    assert ended.ended_at is not None
    assert ended.duration == ended.ended_at - started.started_at
    assert store.load() is None

    # The next read starts a fresh session.
    assert manager.current_session().id != started.id


def test_end_session_without_live_session() -> None:
    assert _make_manager().end_session() is None


def test_duckdb_store_survives_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "sessions.duckdb"

    store = DuckDBSessionStore(path=db_path)
    session = _make_manager(store).current_session()
    store.close()

    reopened = DuckDBSessionStore(path=db_path)
    try:
        assert _make_manager(reopened).current_session() == session
    finally:
        reopened.close()


def test_duckdb_store_save_replaces_and_clear_removes(tmp_path: Path) -> None:
    store = DuckDBSessionStore(path=tmp_path / "sessions.duckdb")
    try:
        a = Session(id="a", environment="production", started_at=1, user_agent="ua", ip_address="ip")
        b = a.model_copy(update={"id": "b"})
        store.save(a)
        store.save(b)
        assert store.load() == b

        store.clear()
        assert store.load() is None
    finally:
        store.close()


def test_duckdb_store_discards_corrupt_row(tmp_path: Path) -> None:
    store = DuckDBSessionStore(path=tmp_path / "sessions.duckdb", table="sessions_t")
    try:
        store._conn.execute(
            "insert into sessions_t (storage_name, payload_json) values (?, ?)",
            ["kuyo_session", '{"id": 42}'],
        )
        assert store.load() is None
        assert store._conn.execute("select count(*) from sessions_t").fetchone()[0] == 0
    finally:
        store.close()
