from __future__ import annotations

from pathlib import Path

import duckdb
import pytest

from observability import DeliveryRecorder, DuckDBDeliverySink, InMemoryDeliverySink


class _FailingSink:
    def write(self, record) -> None:  # noqa: ANN001
        raise OSError("disk full")

    def close(self) -> None:
        return None


@pytest.mark.asyncio
async def test_recorder_writes_records_in_order() -> None:
    sink = InMemoryDeliverySink()
    recorder = DeliveryRecorder(sink=sink, max_queue_size=100)

    recorder.record(route="batch", outcome="sent", session_id="s1", platform="server", count=50, status_code=200)
    recorder.record(route="critical", outcome="failed", session_id="s1", platform="server", error="timeout")
    recorder.record(route="envelope", outcome="sent", platform="python")

    await recorder.aclose()

    records = sink.snapshot()
    assert [(r.route, r.outcome) for r in records] == [
        ("batch", "sent"),
        ("critical", "failed"),
        ("envelope", "sent"),
    ]
    assert records[0].count == 50
    assert records[1].error == "timeout"
    assert all(r.logged_at >= r.occurred_at for r in records)


@pytest.mark.asyncio
async def test_recorder_ignores_records_after_close() -> None:
    sink = InMemoryDeliverySink()
    recorder = DeliveryRecorder(sink=sink)
    await recorder.aclose()

    recorder.record(route="batch", outcome="sent")

    assert sink.snapshot() == []


@pytest.mark.asyncio
async def test_recorder_counts_full_queue_and_sink_failures() -> None:
    recorder = DeliveryRecorder(sink=_FailingSink(), max_queue_size=1)

    recorder.record(route="batch", outcome="sent")
    recorder.record(route="batch", outcome="sent")
    await recorder.aclose()

    status = recorder.degraded_status()
    assert status["write_failures"] == 2
    assert status["first_failure_at"] is not None
    assert status["last_failure_at"] >= status["first_failure_at"]


def test_recorder_without_loop_writes_inline() -> None:
    sink = InMemoryDeliverySink()
    recorder = DeliveryRecorder(sink=sink)

    recorder.record(route="batch", outcome="dropped", session_id="s1", platform="server", count=3)

    (record,) = sink.snapshot()
    assert record.outcome == "dropped"
    assert record.count == 3


def test_duckdb_sink_persists_records(tmp_path: Path) -> None:
    db_path = tmp_path / "deliveries.duckdb"
    sink = DuckDBDeliverySink(path=db_path)
    recorder = DeliveryRecorder(sink=sink)

    recorder.record(route="batch", outcome="sent", session_id="s1", platform="server", count=2, status_code=200)
    sink.close()

    conn = duckdb.connect(str(db_path))
    try:
        rows = conn.execute("select route, outcome, session_id, count, status_code from delivery_records").fetchall()
    finally:
        conn.close()
    assert rows == [("batch", "sent", "s1", 2, 200)]


@pytest.mark.asyncio
async def test_recorder_summary_waits_for_queued_records() -> None:
    sink = InMemoryDeliverySink()
    recorder = DeliveryRecorder(sink=sink)

    recorder.record(route="batch", outcome="sent", count=50)
    recorder.record(route="batch", outcome="sent", count=7)
    recorder.record(route="batch", outcome="dropped", count=2)
    recorder.record(route="envelope", outcome="failed")

    assert await recorder.summary() == {"batch.sent": 57, "batch.dropped": 2, "envelope.failed": 1}
    await recorder.aclose()


def test_duckdb_sink_summary_groups_by_route_and_outcome(tmp_path: Path) -> None:
    sink = DuckDBDeliverySink(path=tmp_path / "deliveries.duckdb")
    recorder = DeliveryRecorder(sink=sink)
    try:
        recorder.record(route="batch", outcome="sent", count=3)
        recorder.record(route="batch", outcome="sent", count=4)
        recorder.record(route="critical", outcome="failed")

        assert sink.summary() == {"batch.sent": 7, "critical.failed": 1}
    finally:
        sink.close()
