from __future__ import annotations

import asyncio

import pytest

from kuyo.models import MetricRecord
from kuyo.performance import PerformanceMonitor, process_metrics


def _make_monitor(sink: list[MetricRecord], **kwargs) -> PerformanceMonitor:  # noqa: ANN003
    async def _flush_all() -> bool:
        return True

    kwargs.setdefault("platform", "server")
    return PerformanceMonitor(sink.append, _flush_all, **kwargs)


def test_process_metrics_yields_system_sample() -> None:
    (record,) = list(process_metrics())

    assert record.type == "process_metrics"
    assert record.name == "system_metrics"
    assert record.unit == "s"
    assert record.value >= 0
    assert record.context is not None
    assert {"cpu", "threads", "gc", "process"} <= set(record.context)


def test_collect_once_isolates_failing_producers() -> None:
    sink: list[MetricRecord] = []
    monitor = _make_monitor(sink)

    def broken() -> list[MetricRecord]:
        raise RuntimeError("sensor offline")

    def healthy() -> list[MetricRecord]:
        return [MetricRecord(type="custom", name="ok", value=1)]

    monitor.register(broken)
    monitor.register(healthy)

    assert monitor.collect_once() == 1
    assert monitor.collect_once() == 1
    assert [r.name for r in sink] == ["ok", "ok"]
    assert monitor.producer_failures == {"broken": 2}


def test_producers_only_run_on_their_platforms() -> None:
    sink: list[MetricRecord] = []
    monitor = _make_monitor(sink, platform="browser")

    monitor.register(lambda: [MetricRecord(type="custom", name="server_only", value=1)], name="server_only")
    monitor.register(
        lambda: [MetricRecord(type="web_vitals", name="lcp", value=1)],
        platforms=("browser",),
        name="vitals",
    )

    assert monitor.active_producers() == ["vitals"]
    monitor.collect_once()
    assert [r.name for r in sink] == ["lcp"]


def test_measure_custom_metric_buffers_record() -> None:
    sink: list[MetricRecord] = []
    monitor = _make_monitor(sink)

    record = monitor.measure_custom_metric("checkout_ms", 87.5, {"route": "/cart"}, unit="ms")

    assert sink == [record]
    assert record.type == "custom"
    assert record.context == {"route": "/cart"}


@pytest.mark.asyncio
async def test_start_samples_immediately_and_sweeps_periodically() -> None:
    sink: list[MetricRecord] = []
    sweeps: list[int] = []

    async def _flush_all() -> bool:
        sweeps.append(1)
        return True

    monitor = PerformanceMonitor(sink.append, _flush_all, platform="server", sampling_interval_s=60, sweep_interval_s=0.02)
    monitor.register(process_metrics)

    monitor.start()
    monitor.start()
    await asyncio.sleep(0.07)

    assert monitor.running
    assert [r.name for r in sink] == ["system_metrics"]
    assert len(sweeps) >= 2

    await monitor.aclose()
    await monitor.aclose()
    assert not monitor.running


@pytest.mark.asyncio
async def test_failing_sweep_keeps_running() -> None:
    calls: list[int] = []

    async def _flush_all() -> bool:
        calls.append(1)
        raise RuntimeError("flush failed")

    monitor = PerformanceMonitor(lambda r: None, _flush_all, platform="server", sweep_interval_s=0.01)
    monitor.start()
    await asyncio.sleep(0.06)
    await monitor.aclose()

    assert len(calls) >= 2


def test_start_without_running_loop_reports_not_started() -> None:
    monitor = _make_monitor([])
    monitor.register(process_metrics)

    assert monitor.start() is False
    assert not monitor.running
