"""Runtime adapter interface.

The client depends on this small interface so host runtimes can be swapped
without changing the capture and delivery code.
"""

from __future__ import annotations

from typing import Any, Protocol

from ..models import EventLevel


class Adapter(Protocol):
    name: str

    def setup(self) -> None:
        """Install runtime hooks."""

    def teardown(self) -> None:
        """Remove runtime hooks installed by `setup()`."""

    def get_context(self) -> dict[str, Any]:
        """Return an ambient context snapshot attached to every event."""

    def capture_exception(self, error: BaseException, extra: dict[str, Any] | None = None) -> None:
        """Capture an exception through the client, tagged with this adapter."""

    def capture_message(
        self,
        message: str,
        level: EventLevel = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Capture a message through the client, tagged with this adapter."""
