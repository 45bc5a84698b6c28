"""Delivery diagnostic record models.

Records are designed to be:
- Append-only (sink decides storage).
- Small: counts and identifiers, never the telemetry payload itself.
- Carry both "occurred at" and "logged at" timestamps.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


DeliveryRoute = Literal["envelope", "batch", "critical"]
DeliveryOutcome = Literal["sent", "failed", "dropped"]


class DeliveryRecord(BaseModel):
    """One delivery attempt (or local drop) and its outcome."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    route: DeliveryRoute
    outcome: DeliveryOutcome

    # Buffer identity (session x platform) the records belonged to.
    session_id: str | None = None
    platform: str | None = None

    # Number of records carried (1 for envelopes and critical metrics).
    count: int = 1

    status_code: int | None = None
    error: str | None = None

    occurred_at: datetime = Field(default_factory=utc_now)
    logged_at: datetime = Field(default_factory=utc_now)
