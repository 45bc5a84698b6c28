"""Metric buffer store and flush scheduler.

Records are buffered per `BufferKey` (session x platform) and delivered in
batches. A key is flushed immediately when its buffer reaches `batch_size`,
after `idle_timeout_s` otherwise, or on demand.

Concurrency model (single event loop):
- Buffer mutations (`add_metric`, the swap-out at the start of a flush, the
  merge-back after a failure) are synchronous, so no coroutine ever observes
  a half-swapped buffer.
- Delivery is the only suspension point. Each key has at most one delivery
  task in flight; triggers arriving meanwhile are remembered and serviced
  when it completes.
- A failed batch is merged back in front of records that arrived during the
  delivery, preserving order. Buffers are bounded; the oldest records are
  dropped on overflow.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterator

import structlog

from .models import BufferKey, FlushState, MetricRecord

logger = structlog.get_logger(__name__)

DeliverBatch = Callable[[BufferKey, list[MetricRecord]], Awaitable[bool]]
DropCallback = Callable[[BufferKey, int], None]


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class MetricBuffer:
    """Pending records of one key plus its scheduling state."""

    def __init__(self, key: BufferKey, *, max_size: int) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.key = key
        self.records: deque[MetricRecord] = deque(maxlen=max_size)
        self.timer: asyncio.TimerHandle | None = None
        self.in_flight: asyncio.Task[bool] | None = None
        self.flush_requested = False
        self.dropped_count = 0

    @property
    def state(self) -> FlushState:
        if self.in_flight is not None:
            return FlushState.FLUSH_IN_FLIGHT
        if self.timer is not None:
            return FlushState.TIMER_ARMED
        return FlushState.IDLE

    def append(self, record: MetricRecord) -> int:
        """Append a record; returns how many old records were evicted (0 or 1)."""
        was_full = len(self.records) == self.records.maxlen
        self.records.append(record)
        if was_full:
            # deque evicted the oldest record
            self.dropped_count += 1
            return 1
        return 0

    def detach(self) -> list[MetricRecord]:
        """Swap out the pending records, leaving the buffer empty."""
        batch = list(self.records)
        self.records.clear()
        return batch

    def restore(self, batch: list[MetricRecord]) -> int:
        """Merge a failed batch back in front of newer records.

        Returns the number of oldest records dropped to stay within bounds.
        """
        merged = [*batch, *self.records]
        overflow = max(0, len(merged) - (self.records.maxlen or len(merged)))
        self.records = deque(merged[overflow:], maxlen=self.records.maxlen)
        self.dropped_count += overflow
        return overflow

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def __len__(self) -> int:
        return len(self.records)


class MetricBufferStore:
    """Owns the `BufferKey -> MetricBuffer` mapping."""

    def __init__(self, *, max_buffered: int = 1000) -> None:
        self._max_buffered = max_buffered
        self._buffers: dict[BufferKey, MetricBuffer] = {}

    def get_or_create(self, key: BufferKey) -> MetricBuffer:
        buf = self._buffers.get(key)
        if buf is None:
            buf = MetricBuffer(key, max_size=self._max_buffered)
            self._buffers[key] = buf
        return buf

    def get(self, key: BufferKey) -> MetricBuffer | None:
        return self._buffers.get(key)

    def keys(self) -> list[BufferKey]:
        return list(self._buffers)

    def snapshot(self, key: BufferKey) -> list[MetricRecord]:
        """Point-in-time copy of the records pending for `key`."""
        buf = self._buffers.get(key)
        return list(buf.records) if buf is not None else []

    def pending_count(self) -> int:
        return sum(len(buf) for buf in self._buffers.values())

    def __iter__(self) -> Iterator[MetricBuffer]:
        return iter(list(self._buffers.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._buffers


class FlushScheduler:
    """Decides when each key is flushed and runs its deliveries.

    Per-key states: IDLE -> TIMER_ARMED (first record) -> FLUSH_IN_FLIGHT
    (threshold, timer or forced flush) -> IDLE or TIMER_ARMED when records
    remain. Teardown cancels every timer and drains every key.
    """

    # Log aggregate drop counts every N drops.
    _LOG_INTERVAL = 100

    def __init__(
        self,
        store: MetricBufferStore,
        deliver: DeliverBatch,
        *,
        batch_size: int = 50,
        idle_timeout_s: float = 30.0,
        on_drop: DropCallback | None = None,
    ) -> None:
        """Create a scheduler.

        Args:
            store: Buffer store owned by this scheduler.
            deliver: Coroutine sending one batch; returns True on success.
            batch_size: Buffer length that triggers an immediate flush.
            idle_timeout_s: Delay before a non-empty buffer is flushed anyway.
            on_drop: Called with `(key, count)` when records are evicted.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if idle_timeout_s <= 0:
            raise ValueError(f"idle_timeout_s must be > 0, got {idle_timeout_s}")
        self._store = store
        self._deliver = deliver
        self._batch_size = batch_size
        self._idle_timeout_s = idle_timeout_s
        self._on_drop = on_drop
        self._closed = False
        self._dropped_total = 0
        self._last_logged_drop_count = 0

    @property
    def store(self) -> MetricBufferStore:
        return self._store

    @property
    def dropped_total(self) -> int:
        """Records evicted from any buffer since creation."""
        return self._dropped_total

    def state(self, key: BufferKey) -> FlushState:
        buf = self._store.get(key)
        return buf.state if buf is not None else FlushState.IDLE

    def has_pending_timers(self) -> bool:
        return any(buf.timer is not None for buf in self._store)

    def add_metric(self, key: BufferKey, record: MetricRecord) -> None:
        """Buffer a record and trigger or schedule its flush. Never suspends."""
        buf = self._store.get_or_create(key)
        dropped = buf.append(record)
        if dropped:
            self._report_drop(key, dropped)

        if len(buf) >= self._batch_size:
            self._start_flush(buf)
        else:
            self._arm_timer(buf)

    def _arm_timer(self, buf: MetricBuffer) -> None:
        if self._closed or buf.timer is not None:
            return
        loop = _running_loop()
        if loop is None:
            # Without a loop the records wait for the next forced flush.
            return
        buf.timer = loop.call_later(self._idle_timeout_s, self._on_timer, buf.key)

    def _on_timer(self, key: BufferKey) -> None:
        buf = self._store.get(key)
        if buf is None:
            return
        buf.timer = None
        self._start_flush(buf)

    def _start_flush(self, buf: MetricBuffer) -> asyncio.Task[bool] | None:
        """Swap out the buffer and start its delivery task.

        If a delivery is already in flight for the key, the trigger is
        remembered instead and that task is returned.
        """
        buf.cancel_timer()
        if buf.in_flight is not None:
            buf.flush_requested = True
            return buf.in_flight

        loop = _running_loop()
        if loop is None or not len(buf):
            buf.flush_requested = False
            return None

        batch = buf.detach()
        buf.flush_requested = False
        task = loop.create_task(self._deliver_batch(buf, batch), name=f"kuyo-flush-{buf.key}")
        buf.in_flight = task
        logger.debug("Flushing metric batch", key=str(buf.key), count=len(batch))
        return task

    async def _deliver_batch(self, buf: MetricBuffer, batch: list[MetricRecord]) -> bool:
        ok = False
        try:
            ok = await self._deliver(buf.key, batch)
        except Exception as exc:  # noqa: BLE001 - a raising transport counts as a failed send
            logger.warning("Metric batch delivery raised", key=str(buf.key), error=str(exc))
        finally:
            buf.in_flight = None
            if not ok:
                dropped = buf.restore(batch)
                if dropped:
                    self._report_drop(buf.key, dropped)

        self._after_flush(buf, ok)
        return ok

    def _after_flush(self, buf: MetricBuffer, ok: bool) -> None:
        """Service triggers that arrived during the delivery."""
        if self._closed:
            return
        if ok and len(buf) and (buf.flush_requested or len(buf) >= self._batch_size):
            self._start_flush(buf)
            return
        buf.flush_requested = False
        if len(buf):
            self._arm_timer(buf)

    def _report_drop(self, key: BufferKey, count: int) -> None:
        self._dropped_total += count
        if self._on_drop is not None:
            self._on_drop(key, count)
        if self._dropped_total - self._last_logged_drop_count >= self._LOG_INTERVAL:
            logger.warning(
                "Metric buffer overflow - records dropped",
                key=str(key),
                dropped_since_last_log=self._dropped_total - self._last_logged_drop_count,
                dropped_total=self._dropped_total,
            )
            self._last_logged_drop_count = self._dropped_total

    async def force_flush(self, key: BufferKey) -> bool:
        """Flush `key` now, after any delivery already in flight.

        Returns True when everything pending at the call was delivered (or
        nothing was pending).
        """
        buf = self._store.get(key)
        if buf is None:
            return True

        while buf.in_flight is not None:
            # asyncio.wait never cancels the delivery if this caller is cancelled.
            await asyncio.wait([buf.in_flight])

        task = self._start_flush(buf)
        if task is None:
            return True
        await asyncio.wait([task])
        return not task.cancelled() and task.exception() is None and task.result()

    async def force_flush_all(self) -> bool:
        """Flush every known key; True when all of them were delivered."""
        results = await asyncio.gather(*(self.force_flush(key) for key in self._store.keys()))
        return all(results)

    def cancel_timers(self) -> None:
        for buf in self._store:
            buf.cancel_timer()

    async def shutdown(self, grace_period_s: float = 5.0) -> bool:
        """Cancel timers and drain every key within the grace period.

        Deliveries still running when the grace period ends are left to
        finish on their own; they are never cancelled here.
        """
        self._closed = True
        self.cancel_timers()
        try:
            drained = await asyncio.wait_for(self.force_flush_all(), timeout=grace_period_s)
        except TimeoutError:
            logger.warning(
                "Metric drain timed out",
                grace_period_s=grace_period_s,
                pending=self._store.pending_count(),
            )
            drained = False
        self.cancel_timers()
        return drained
