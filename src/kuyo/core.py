"""Kuyo client: the engine object handed to adapters and producers.

The client is constructed once at process start and passed explicitly to
whatever needs it; there is no module-level instance.

- `capture_exception` / `capture_message` build an envelope and deliver it
  fire-and-forget (logged and discarded on failure).
- `add_metric` buffers a metric under `(session id, platform)`.
- `send_critical_metric` bypasses the buffers.
- `aclose` drains buffered metrics within `shutdown_grace_s`.

No telemetry failure propagates into host code.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from config import KuyoConfig
from observability.recorder import DeliveryRecorder

from .adapters import check_adapter_tag, resolve_adapter
from .adapters.base import Adapter
from .buffer import FlushScheduler, MetricBufferStore
from .critical import CriticalPathSender
from .envelope import EnvelopeBuilder
from .models import BufferKey, EventEnvelope, EventLevel, MetricRecord, Session
from .performance import PerformanceMonitor, process_metrics
from .session import SessionManager
from .stores import DuckDBSessionStore, InMemorySessionStore, SessionStore
from .transport import DeliveryTransport

logger = structlog.get_logger(__name__)


class KuyoClient:
    """Capture API plus the buffering and delivery engine behind it."""

    def __init__(
        self,
        config: KuyoConfig,
        *,
        session_store: SessionStore | None = None,
        transport: DeliveryTransport | None = None,
        recorder: DeliveryRecorder | None = None,
        adapter: Adapter | None = None,
    ) -> None:
        """Create a client. Configuration errors raise here, before any hook is installed.

        Raises:
            ConfigurationError: the configured adapter tag is not supported.
        """
        if adapter is None:
            check_adapter_tag(config.adapter)

        self.config = config
        self._recorder = recorder

        if session_store is None:
            if config.session_db_path:
                session_store = DuckDBSessionStore(path=config.session_db_path)
            else:
                session_store = InMemorySessionStore()
        self._session_store = session_store
        self._sessions = SessionManager(session_store, environment=config.environment)

        self._adapter: Adapter | None = None
        self._pending_adapter = adapter
        self._envelopes = EnvelopeBuilder(self._sessions, lambda: self._adapter)

        self.transport = transport or DeliveryTransport(config, recorder=recorder)
        self.scheduler = FlushScheduler(
            MetricBufferStore(max_buffered=config.max_buffered_metrics),
            self.transport.send_batch,
            batch_size=config.batch_size,
            idle_timeout_s=config.batch_timeout_s,
            on_drop=self._record_drop,
        )
        self._critical = CriticalPathSender(self.transport, self.buffer_key)

        self._performance: PerformanceMonitor | None = None
        if config.performance_enabled:
            self._performance = PerformanceMonitor(
                self.add_metric,
                self.scheduler.force_flush_all,
                platform=config.platform,
                sampling_interval_s=config.sampling_interval_s,
                sweep_interval_s=config.sweep_interval_s,
            )
            self._performance.register(process_metrics, platforms=("server",))

        self._event_tasks: set[asyncio.Task[bool]] = set()
        self._started = False
        self._monitor_deferred = False
        self._closed = False

        logger.debug(
            "Kuyo client initialized",
            endpoint=config.endpoint,
            environment=config.environment,
            platform=config.platform,
            plugins=list(config.plugins),
        )

    def start(self) -> None:
        """Install the adapter and start the performance monitor if enabled.

        Without a running event loop the monitor starts later, on the first
        `add_metric`, `flush` or `start` call made from inside a loop.
        """
        if self._started:
            self._start_monitor()
            return
        self._started = True
        self.use_adapter(self._pending_adapter or resolve_adapter(self.config.adapter, self))
        self._pending_adapter = None
        self._start_monitor()

    def _start_monitor(self) -> None:
        if self._performance is None or not self._started or self._closed or self._performance.running:
            return
        if not self._performance.start() and not self._monitor_deferred:
            self._monitor_deferred = True
            logger.info("Performance monitor deferred until an event loop is running")
        elif self._performance.running:
            self._monitor_deferred = False

    def use_adapter(self, adapter: Adapter) -> None:
        """Replace the active adapter, tearing down the previous one first."""
        if self._adapter is not None:
            self._adapter.teardown()
        self._adapter = adapter
        adapter.setup()
        logger.debug("Adapter registered", adapter=adapter.name)

    def get_adapter(self) -> Adapter | None:
        return self._adapter

    def get_config(self) -> KuyoConfig:
        return self.config

    @property
    def performance(self) -> PerformanceMonitor | None:
        """The performance monitor, when the `performance` plugin is enabled."""
        return self._performance

    @property
    def session(self) -> Session:
        return self._sessions.current_session()

    def end_session(self) -> Session | None:
        return self._sessions.end_session()

    def buffer_key(self) -> BufferKey:
        return BufferKey(session_id=self._sessions.current_session().id, platform=self.config.platform)

    def capture_exception(self, error: BaseException, extra: dict[str, Any] | None = None) -> None:
        """Capture an exception (fire-and-forget)."""
        try:
            envelope = self._envelopes.from_exception(error, extra)
        except Exception as exc:  # noqa: BLE001 - never raise into host code
            logger.warning("Failed to build exception event", error=str(exc))
            return
        self._dispatch(envelope)

    def capture_message(
        self,
        message: str,
        level: EventLevel = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Capture a message (fire-and-forget)."""
        try:
            envelope = self._envelopes.from_message(message, level, extra)
        except Exception as exc:  # noqa: BLE001 - never raise into host code
            logger.warning("Failed to build message event", error=str(exc))
            return
        self._dispatch(envelope)

    def _dispatch(self, envelope: EventEnvelope) -> None:
        """Send an envelope in the background; inline when no loop is running."""
        logger.debug("Sending event", event_id=envelope.id, level=envelope.level)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                asyncio.run(self.transport.send_envelope(envelope))
            except Exception as exc:  # noqa: BLE001 - never raise into host code
                logger.warning("Event delivery raised", event_id=envelope.id, error=str(exc))
            return
        task = loop.create_task(self.transport.send_envelope(envelope), name=f"kuyo-event-{envelope.id}")
        self._event_tasks.add(task)
        task.add_done_callback(self._on_event_done)

    def _on_event_done(self, task: asyncio.Task[bool]) -> None:
        self._event_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Event delivery raised", task=task.get_name(), error=str(task.exception()))

    def add_metric(self, metric: MetricRecord) -> None:
        """Buffer a metric under the current session and platform.

        A metric that cannot be serialized is rejected here, logged and
        recorded as dropped, so it never reaches a batch.
        """
        try:
            key = self.buffer_key()
            try:
                metric.to_wire()
            except (ValueError, TypeError) as exc:
                logger.warning("Rejected unserializable metric", metric=metric.name, error=str(exc))
                self._record_drop(key, 1)
            else:
                self.scheduler.add_metric(key, metric)
        except Exception as exc:  # noqa: BLE001 - never raise into host code
            logger.warning("Failed to buffer metric", metric=metric.name, error=str(exc))
        self._start_monitor()

    async def send_critical_metric(self, metric: MetricRecord) -> bool:
        """Send a metric immediately, without buffering or retry."""
        return await self._critical.send(metric)

    async def flush(self) -> bool:
        """Deliver every buffered metric now."""
        self._start_monitor()
        return await self.scheduler.force_flush_all()

    def _record_drop(self, key: BufferKey, count: int) -> None:
        if self._recorder is None:
            return
        self._recorder.record(
            route="batch",
            outcome="dropped",
            session_id=key.session_id,
            platform=key.platform,
            count=count,
        )

    async def aclose(self) -> None:
        """Tear down hooks, drain buffers and release resources.

        Safe to call multiple times.
        """
        if self._closed:
            return
        self._closed = True
        grace = self.config.shutdown_grace_s

        if self._adapter is not None:
            self._adapter.teardown()
        if self._performance is not None:
            await self._performance.aclose()

        await self.scheduler.shutdown(grace)

        if self._event_tasks:
            _, pending = await asyncio.wait(set(self._event_tasks), timeout=grace)
            if pending:
                logger.warning("Event deliveries still pending at close", pending=len(pending))

        if self._recorder is not None:
            await self._recorder.aclose()
        self._session_store.close()
        logger.debug("Kuyo client closed")
