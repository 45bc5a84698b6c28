"""Delivery diagnostics.

This package records what happened to telemetry on its way out:
- One record per delivery attempt (sent/failed) and per local drop.
- Both "occurred at" and "logged at" timestamps.
- Persisted to a sink (in-memory or DuckDB) without blocking the event loop.
"""

from .models import DeliveryRecord
from .recorder import DeliveryRecorder
from .sinks import DeliverySink, DuckDBDeliverySink, InMemoryDeliverySink

__all__ = [
    "DeliveryRecord",
    "DeliveryRecorder",
    "DeliverySink",
    "DuckDBDeliverySink",
    "InMemoryDeliverySink",
]
