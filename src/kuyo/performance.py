"""Performance monitor (MVP).

Responsibilities:
- run metric producers registered for the active platform on an interval
- isolate producer failures so one broken source never disables the others
- sweep the whole buffer store on a longer interval (`sweep_interval_s`)
"""

from __future__ import annotations

import asyncio
import gc
import os
import sys
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from config import Platform

from .models import MetricRecord

logger = structlog.get_logger(__name__)

MetricProducer = Callable[[], Iterable[MetricRecord]]

_PROCESS_STARTED_AT = time.monotonic()


@dataclass(frozen=True)
class _Registration:
    name: str
    producer: MetricProducer
    platforms: frozenset[str]


def process_metrics() -> Iterable[MetricRecord]:
    """Sample resource usage of the current interpreter process."""
    times = os.times()
    uptime = time.monotonic() - _PROCESS_STARTED_AT
    context: dict[str, Any] = {
        "uptime_s": round(uptime, 3),
        "cpu": {
            "user_ms": round(times.user * 1000),
            "system_ms": round(times.system * 1000),
        },
        "threads": threading.active_count(),
        "gc": {"counts": list(gc.get_count())},
        "process": {
            "pid": os.getpid(),
            "python": sys.version.split()[0],
            "platform": sys.platform,
            "executable": sys.executable,
        },
    }
    yield MetricRecord(type="process_metrics", name="system_metrics", value=uptime, unit="s", context=context)


class PerformanceMonitor:
    """Samples producers periodically and sweeps the buffer store.

    Producers return `MetricRecord`s; each record is pushed through
    `add_metric`, so it lands in the same buffers as any other metric.
    """

    def __init__(
        self,
        add_metric: Callable[[MetricRecord], None],
        flush_all: Callable[[], Awaitable[Any]],
        *,
        platform: Platform,
        sampling_interval_s: float = 30.0,
        sweep_interval_s: float = 300.0,
    ) -> None:
        self._add_metric = add_metric
        self._flush_all = flush_all
        self._platform = platform
        self._sampling_interval_s = sampling_interval_s
        self._sweep_interval_s = sweep_interval_s

        self._producers: list[_Registration] = []
        self._failures: dict[str, int] = {}
        self._sampler_task: asyncio.Task[None] | None = None
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._sampler_task is not None and not self._sampler_task.done()

    @property
    def producer_failures(self) -> dict[str, int]:
        """Failure counts per producer name."""
        return dict(self._failures)

    def register(
        self,
        producer: MetricProducer,
        *,
        platforms: Iterable[Platform] = ("server",),
        name: str | None = None,
    ) -> None:
        """Register a producer for the given platforms."""
        label = name or getattr(producer, "__name__", repr(producer))
        self._producers.append(_Registration(label, producer, frozenset(platforms)))

    def active_producers(self) -> list[str]:
        return [reg.name for reg in self._producers if self._platform in reg.platforms]

    def collect_once(self) -> int:
        """Run every active producer once; returns how many records were added."""
        added = 0
        for reg in self._producers:
            if self._platform not in reg.platforms:
                continue
            try:
                records = list(reg.producer())
            except Exception as exc:  # noqa: BLE001 - isolate producer failures
                self._failures[reg.name] = self._failures.get(reg.name, 0) + 1
                logger.warning(
                    "Metric producer failed",
                    producer=reg.name,
                    failures=self._failures[reg.name],
                    error=str(exc),
                )
                continue
            for record in records:
                self._add_metric(record)
                added += 1
        return added

    def measure_custom_metric(
        self,
        name: str,
        value: float,
        extra: dict[str, Any] | None = None,
        *,
        unit: str | None = None,
    ) -> MetricRecord:
        """Buffer an application-defined metric."""
        record = MetricRecord(type="custom", name=name, value=value, unit=unit, context=extra)
        self._add_metric(record)
        return record

    def start(self) -> bool:
        """Start the sampling and sweep loops.

        Returns False, without starting anything, when no event loop is running.
        """
        if self.running:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Performance monitor waiting for an event loop", platform=self._platform)
            return False
        self._sampler_task = loop.create_task(self._sample_loop(), name="kuyo-performance-sampler")
        self._sweep_task = loop.create_task(self._sweep_loop(), name="kuyo-performance-sweep")
        logger.debug("Performance monitor started", platform=self._platform, producers=self.active_producers())
        return True

    async def _sample_loop(self) -> None:
        while True:
            self.collect_once()
            await asyncio.sleep(self._sampling_interval_s)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval_s)
            try:
                await self._flush_all()
            except Exception as exc:  # noqa: BLE001 - keep sweeping
                logger.warning("Periodic metric sweep failed", error=str(exc))

    async def aclose(self) -> None:
        """Stop both loops. Safe to call multiple times."""
        tasks = [t for t in (self._sampler_task, self._sweep_task) if t is not None]
        self._sampler_task = None
        self._sweep_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
