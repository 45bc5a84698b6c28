"""HTTP delivery transport for the Kuyo collector.

Each public method performs exactly one POST and reports the outcome as a
bool; retrying is the caller's business (the flush scheduler re-buffers
failed batches, envelopes and critical metrics are best-effort).

The HTTP call uses `requests` executed in a thread so the event loop is never
blocked by network I/O.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import requests  # type: ignore
import structlog

from config import KuyoConfig
from observability.models import DeliveryOutcome, DeliveryRoute
from observability.recorder import DeliveryRecorder

from .errors import KuyoHttpError
from .models import BufferKey, EventEnvelope, MetricRecord, PerformanceBatch

logger = structlog.get_logger(__name__)

BATCH_PATH = "/performance/batch"
METRIC_PATH = "/performance/metric"

# Raised by pydantic when a payload holds values with no JSON form
# (PydanticSerializationError is a ValueError).
_SERIALIZATION_ERRORS = (ValueError, TypeError)

BodyFactory = Callable[[], dict[str, Any]]


class DeliveryTransport:
    """Sends envelopes, metric batches and critical metrics to the collector."""

    def __init__(self, config: KuyoConfig, *, recorder: DeliveryRecorder | None = None) -> None:
        """Create a transport for the configured endpoint and credential."""
        self.config = config
        self.endpoint: str = config.endpoint
        self._recorder = recorder

    def _headers(self, platform: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key,
            "User-Agent": f"Kuyo-SDK/{platform}",
        }

    async def _post(self, path: str, body: dict[str, Any], *, platform: str) -> int:
        """POST a JSON body, returning the status code.

        Raises:
        - `KuyoHttpError` for non-2xx responses
        - `requests.RequestException` for transport errors
        """
        url = self.endpoint + path
        headers = self._headers(platform)
        timeout = self.config.request_timeout_s

        def _do_request() -> int:
            """Execute the HTTP request synchronously (runs in a worker thread)."""
            resp = requests.request("POST", url, headers=headers, json=body, timeout=timeout)
            if 200 <= resp.status_code < 300:
                return resp.status_code

            error_payload: dict[str, Any] | None
            try:
                error_payload = resp.json()
            except Exception:  # noqa: BLE001 - best-effort parsing
                error_payload = None
            raise KuyoHttpError(status_code=resp.status_code, payload=error_payload)

        return await asyncio.to_thread(_do_request)

    async def _deliver(
        self,
        route: DeliveryRoute,
        path: str,
        build_body: BodyFactory,
        *,
        platform: str,
        session_id: str | None,
        count: int,
    ) -> bool:
        """Serialize and send one request, mapping the outcome to a bool (never raises)."""
        try:
            body = build_body()
        except _SERIALIZATION_ERRORS as exc:
            logger.warning(
                "Telemetry payload not serializable",
                route=route,
                session_id=session_id,
                platform=platform,
                count=count,
                error=str(exc),
            )
            self._record(route, "failed", session_id, platform, count, None, str(exc))
            return False

        try:
            status_code = await self._post(path, body, platform=platform)
        except (KuyoHttpError, requests.RequestException) as exc:
            status = exc.status_code if isinstance(exc, KuyoHttpError) else None
            logger.warning(
                "Telemetry delivery failed",
                route=route,
                session_id=session_id,
                platform=platform,
                count=count,
                status_code=status,
                error=str(exc),
            )
            self._record(route, "failed", session_id, platform, count, status, str(exc))
            return False

        logger.debug("Telemetry delivered", route=route, session_id=session_id, platform=platform, count=count)
        self._record(route, "sent", session_id, platform, count, status_code, None)
        return True

    def _record(
        self,
        route: DeliveryRoute,
        outcome: DeliveryOutcome,
        session_id: str | None,
        platform: str,
        count: int,
        status_code: int | None,
        error: str | None,
    ) -> None:
        if self._recorder is None:
            return
        self._recorder.record(
            route=route,
            outcome=outcome,
            session_id=session_id,
            platform=platform,
            count=count,
            status_code=status_code,
            error=error,
        )

    async def send_envelope(self, envelope: EventEnvelope) -> bool:
        """POST a single error/message event to the endpoint root."""
        return await self._deliver(
            "envelope",
            "",
            envelope.to_wire,
            platform=envelope.platform,
            session_id=envelope.session.id,
            count=1,
        )

    def _wire_metrics(self, key: BufferKey, metrics: list[MetricRecord]) -> list[dict[str, Any]]:
        """Serialize each metric, dropping the ones that cannot be serialized.

        A record with no JSON form would fail every retry, so it is discarded
        here instead of holding back the rest of its batch.
        """
        wire: list[dict[str, Any]] = []
        for metric in metrics:
            try:
                wire.append(metric.to_wire())
            except _SERIALIZATION_ERRORS as exc:
                logger.warning(
                    "Dropping unserializable metric",
                    key=str(key),
                    metric=metric.name,
                    error=str(exc),
                )
                self._record("batch", "dropped", key.session_id, key.platform, 1, None, str(exc))
        return wire

    async def send_batch(self, key: BufferKey, metrics: list[MetricRecord]) -> bool:
        """POST a batch of metrics buffered under `key`.

        Returns True when nothing deliverable remains (every record was
        either sent or dropped as unserializable).
        """
        wire_metrics = self._wire_metrics(key, metrics)
        if not wire_metrics:
            return True

        def _build_body() -> dict[str, Any]:
            header = PerformanceBatch(
                session_id=key.session_id,
                environment=self.config.environment,
                platform=key.platform,
                adapter=self.config.adapter,
                metrics=[],
            )
            return {**header.to_wire(), "metrics": wire_metrics}

        return await self._deliver(
            "batch",
            BATCH_PATH,
            _build_body,
            platform=key.platform,
            session_id=key.session_id,
            count=len(wire_metrics),
        )

    async def send_critical(self, key: BufferKey, metric: MetricRecord) -> bool:
        """POST one metric merged with session, environment and platform."""

        def _build_body() -> dict[str, Any]:
            return {
                **metric.to_wire(),
                "sessionId": key.session_id,
                "environment": self.config.environment,
                "platform": key.platform,
            }

        return await self._deliver(
            "critical",
            METRIC_PATH,
            _build_body,
            platform=key.platform,
            session_id=key.session_id,
            count=1,
        )
