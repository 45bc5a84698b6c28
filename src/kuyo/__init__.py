"""Kuyo SDK: error/message capture and buffered performance telemetry.

Typical use:

    client = KuyoClient(load_config())
    client.start()
    client.add_metric(MetricRecord(type="custom", name="jobs", value=3))
    ...
    await client.aclose()
"""

from .core import KuyoClient
from .errors import ConfigurationError, KuyoError, KuyoHttpError
from .models import BufferKey, EventEnvelope, FlushState, MetricRecord, Session

__all__ = [
    "BufferKey",
    "ConfigurationError",
    "EventEnvelope",
    "FlushState",
    "KuyoClient",
    "KuyoError",
    "KuyoHttpError",
    "MetricRecord",
    "Session",
]
