"""Kuyo SDK exceptions.

Only configuration problems are raised to callers. Delivery errors are
raised inside the transport and converted into a failed outcome there.
"""

from __future__ import annotations

from typing import Any


class KuyoError(Exception):
    """Base class for SDK errors."""


class ConfigurationError(KuyoError, ValueError):
    """Invalid or missing configuration detected at initialization."""


class KuyoHttpError(KuyoError, RuntimeError):
    """Non-2xx response returned by the collector."""

    def __init__(self, *, status_code: int, payload: dict[str, Any] | None):
        """Create an error capturing HTTP status code and parsed payload (if any)."""
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"Kuyo collector HTTP {status_code}: {payload}")
