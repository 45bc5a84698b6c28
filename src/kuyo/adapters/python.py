"""Adapter for plain Python processes.

Hooks uncaught exceptions via `sys.excepthook` (chaining to the previous hook)
and offers `wrap_handler` for callables whose errors should be captured and
then re-raised unchanged.
"""

from __future__ import annotations

import functools
import inspect
import os
import platform
import sys
import time
from collections.abc import Callable
from types import TracebackType
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from ..models import EventLevel, MetricRecord

if TYPE_CHECKING:
    from ..core import KuyoClient

logger = structlog.get_logger(__name__)

_F = TypeVar("_F", bound=Callable[..., Any])

ExceptHook = Callable[[type[BaseException], BaseException, "TracebackType | None"], Any]


class PythonAdapter:
    """Runtime adapter for the CPython interpreter."""

    name = "python"

    def __init__(self, client: KuyoClient) -> None:
        self._client = client
        self._previous_hook: ExceptHook | None = None
        self._started_at = time.monotonic()

    def setup(self) -> None:
        """Install the uncaught-exception hook (idempotent)."""
        if self._previous_hook is not None:
            return
        self._previous_hook = sys.excepthook
        sys.excepthook = self._excepthook
        logger.debug("Adapter installed", adapter=self.name)

    def teardown(self) -> None:
        """Restore the hook that was active before `setup()`."""
        if self._previous_hook is None:
            return
        if sys.excepthook == self._excepthook:
            sys.excepthook = self._previous_hook
        self._previous_hook = None
        logger.debug("Adapter removed", adapter=self.name)

    def _excepthook(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            self._client.add_metric(
                MetricRecord(
                    type="process_event",
                    name="uncaught_exception",
                    value=1,
                    context={"message": str(exc), "type": exc_type.__name__},
                )
            )
            self.capture_exception(exc, {"handled": False, "mechanism": "excepthook"})
        previous = self._previous_hook or sys.__excepthook__
        previous(exc_type, exc, tb)

    def get_context(self) -> dict[str, Any]:
        config = self._client.get_config()
        context: dict[str, Any] = {
            "runtime": config.platform,
            "python": {
                "implementation": platform.python_implementation(),
                "version": platform.python_version(),
                "executable": sys.executable,
            },
            "os": {
                "system": platform.system(),
                "release": platform.release(),
                "machine": platform.machine(),
            },
            "process": {
                "pid": os.getpid(),
                "uptime_s": round(time.monotonic() - self._started_at, 3),
                "argv": sys.argv[:2],
            },
        }
        deployment = config.deployment.model_dump(exclude_none=True)
        if deployment:
            context["deployment"] = deployment
        return context

    def capture_exception(self, error: BaseException, extra: dict[str, Any] | None = None) -> None:
        self._client.capture_exception(error, {**(extra or {}), "adapter": self.name})

    def capture_message(
        self,
        message: str,
        level: EventLevel = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self._client.capture_message(message, level, {**(extra or {}), "adapter": self.name})

    def wrap_handler(self, handler: _F) -> _F:
        """Capture errors raised by `handler`, then re-raise the original error.

        Works for both plain and `async def` callables.
        """
        extra = {"handler": getattr(handler, "__qualname__", repr(handler))}

        if inspect.iscoroutinefunction(handler):

            @functools.wraps(handler)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await handler(*args, **kwargs)
                except Exception as exc:
                    self.capture_exception(exc, extra)
                    raise

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(handler)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return handler(*args, **kwargs)
            except Exception as exc:
                self.capture_exception(exc, extra)
                raise

        return wrapper  # type: ignore[return-value]
