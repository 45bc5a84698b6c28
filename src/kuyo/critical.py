"""Critical-path sender: single metrics that must not wait for a batch."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from .models import BufferKey, MetricRecord
from .transport import DeliveryTransport

logger = structlog.get_logger(__name__)


class CriticalPathSender:
    """Sends a metric immediately, bypassing the buffers. No retry."""

    def __init__(self, transport: DeliveryTransport, key_provider: Callable[[], BufferKey]) -> None:
        self._transport = transport
        self._key_provider = key_provider

    async def send(self, metric: MetricRecord) -> bool:
        try:
            key = self._key_provider()
            return await self._transport.send_critical(key, metric)
        except Exception as exc:  # noqa: BLE001 - best-effort route
            logger.warning("Critical metric not sent", metric=metric.name, error=str(exc))
            return False
