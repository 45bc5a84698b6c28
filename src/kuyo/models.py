"""Wire and in-memory models for the Kuyo SDK.

Models are frozen once constructed. Field names are snake_case in Python and
camelCase on the wire (`to_wire()`), and timestamps are epoch milliseconds to
match the collector's format.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from config import KuyoEnvironment, Platform

EventLevel = Literal["error", "warning", "info"]


def now_ms() -> int:
    """Return the current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


class _WireModel(BaseModel):
    # Populate by field name in Python, serialize camelCase for the collector.
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)


class Session(_WireModel):
    """The single live session of this process."""

    id: str
    environment: KuyoEnvironment
    started_at: int
    ended_at: int | None = None
    duration: int | None = None
    user_agent: str
    ip_address: str


class EventEnvelope(_WireModel):
    """Normalized error/message event, delivered once and never retried."""

    id: str
    timestamp: int
    message: str
    stack: str | None = None
    level: EventLevel = "error"
    platform: str
    context: dict[str, Any] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)
    session: Session


class MetricRecord(_WireModel):
    """A single performance sample pushed by a producer."""

    type: str
    name: str
    value: float
    unit: str | None = None
    timestamp: int = Field(default_factory=now_ms)
    context: dict[str, Any] | None = None


class BufferKey(BaseModel):
    """Identity of a metric buffer: one per (session, platform)."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    platform: Platform

    def __str__(self) -> str:
        return f"{self.session_id}-{self.platform}"


class PerformanceBatch(_WireModel):
    """Body of `POST <endpoint>/performance/batch`."""

    session_id: str
    environment: KuyoEnvironment
    platform: Platform
    adapter: str | None = None
    metrics: list[MetricRecord]


class FlushState(str, Enum):
    """Scheduling state of a single buffer key."""

    IDLE = "idle"
    TIMER_ARMED = "timer_armed"
    FLUSH_IN_FLIGHT = "flush_in_flight"
