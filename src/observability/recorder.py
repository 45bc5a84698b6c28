"""Async recorder that writes delivery records without blocking the event loop."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog

from .models import DeliveryOutcome, DeliveryRecord, DeliveryRoute, utc_now
from .sinks import DeliverySink

logger = structlog.get_logger(__name__)


class DeliveryRecorder:
    """Queues delivery records and writes them in a background task."""

    def __init__(self, *, sink: DeliverySink, max_queue_size: int = 10000) -> None:
        """Create a recorder backed by a synchronous sink.

        Args:
            sink: Storage backend used by the background writer.
            max_queue_size: Bound for in-memory buffering; records are dropped
                when full so delivery never waits on diagnostics.
        """
        self._sink = sink
        self._queue: asyncio.Queue[DeliveryRecord | None] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._closed = False

        # Degradation tracking: counts and time window.
        self._write_failures = 0
        self._first_failure_at: datetime | None = None
        self._last_failure_at: datetime | None = None

    def _ensure_started(self) -> bool:
        """Start the background writer task if possible; False without a running loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        if self._worker is not None:
            # A writer started on an earlier (finished) loop cannot be reused.
            return self._worker.get_loop() is loop and not self._worker.done()
        self._worker = loop.create_task(self._run_worker(), name="kuyo-delivery-recorder")
        return True

    def _note_failure(self) -> None:
        now = utc_now()
        self._write_failures += 1
        self._first_failure_at = self._first_failure_at or now
        self._last_failure_at = now

    def record(
        self,
        *,
        route: DeliveryRoute,
        outcome: DeliveryOutcome,
        session_id: str | None = None,
        platform: str | None = None,
        count: int = 1,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        """Record a delivery outcome (non-blocking, never raises)."""
        if self._closed:
            return

        record = DeliveryRecord(
            route=route,
            outcome=outcome,
            session_id=session_id,
            platform=platform,
            count=count,
            status_code=status_code,
            error=error,
        )

        if not self._ensure_started():
            # No loop to run the writer (e.g. an inline send at interpreter exit).
            try:
                self._sink.write(record)
            except Exception:  # noqa: BLE001 - diagnostics must not break delivery
                self._note_failure()
            return

        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self._note_failure()

    async def aclose(self) -> None:
        """Flush and close the recorder.

        Safe to call multiple times.
        """
        if self._closed:
            return
        self._closed = True
        if self._worker is not None and not self._worker.done():
            await self._queue.put(None)
            await self._worker
        await asyncio.to_thread(self._sink.close)

    async def _run_worker(self) -> None:
        """Background loop that drains the queue and writes to the sink."""
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                await asyncio.to_thread(self._sink.write, item)
            except Exception as exc:  # noqa: BLE001 - diagnostics must not crash delivery
                self._note_failure()
                logger.debug("Delivery record write failed", error=str(exc))
            finally:
                self._queue.task_done()

    async def summary(self) -> dict[str, int]:
        """Wait for queued records to be written, then aggregate the sink."""
        if self._worker is not None and not self._worker.done() and not self._closed:
            await self._queue.join()
        return await asyncio.to_thread(self._sink.summary)

    def degraded_status(self) -> dict[str, Any]:
        """Return a minimal degraded-status snapshot."""
        return {
            "write_failures": self._write_failures,
            "first_failure_at": self._first_failure_at,
            "last_failure_at": self._last_failure_at,
        }
