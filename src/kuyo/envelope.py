"""Event envelope builder.

Turns an exception or message plus ambient state (active adapter context and
the current session) into an immutable `EventEnvelope`.
"""

from __future__ import annotations

import traceback
import uuid
from collections.abc import Callable
from typing import Any

import structlog

from .adapters.base import Adapter
from .models import EventEnvelope, EventLevel, now_ms
from .session import SessionManager

logger = structlog.get_logger(__name__)

AdapterProvider = Callable[[], "Adapter | None"]


def generate_event_id() -> str:
    return uuid.uuid4().hex


def format_stack(error: BaseException) -> str | None:
    """Format the traceback of an exception, or None if it was never raised."""
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


class EnvelopeBuilder:
    """Builds envelopes, filling unset fields from ambient state."""

    def __init__(self, session_manager: SessionManager, adapter_provider: AdapterProvider) -> None:
        self._sessions = session_manager
        self._adapter_provider = adapter_provider

    def _adapter_context(self, adapter: Adapter | None) -> dict[str, Any]:
        """Snapshot adapter context; a failing adapter yields an empty context."""
        if adapter is None:
            return {}
        try:
            return dict(adapter.get_context())
        except Exception as exc:  # noqa: BLE001 - context must not block capture
            logger.warning("Adapter context unavailable", adapter=adapter.name, error=str(exc))
            return {}

    def build(self, **fields: Any) -> EventEnvelope:
        """Build an envelope; explicitly passed fields override the defaults."""
        adapter = self._adapter_provider()
        defaults: dict[str, Any] = {
            "id": generate_event_id(),
            "timestamp": now_ms(),
            "level": "error",
            "platform": adapter.name if adapter is not None else "unknown",
            "context": self._adapter_context(adapter),
            "extra": {},
            "session": self._sessions.current_session(),
        }
        defaults.update({k: v for k, v in fields.items() if v is not None})
        return EventEnvelope(**defaults)

    def from_exception(self, error: BaseException, extra: dict[str, Any] | None = None) -> EventEnvelope:
        return self.build(
            message=str(error) or type(error).__name__,
            stack=format_stack(error),
            level="error",
            extra=extra,
        )

    def from_message(
        self,
        message: str,
        level: EventLevel = "info",
        extra: dict[str, Any] | None = None,
    ) -> EventEnvelope:
        return self.build(message=message, level=level, extra=extra)
