"""Runtime adapters and their registry."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from ..errors import ConfigurationError
from .base import Adapter
from .python import PythonAdapter

if TYPE_CHECKING:
    from ..core import KuyoClient

ADAPTERS: dict[str, Callable[["KuyoClient"], Adapter]] = {
    "python": PythonAdapter,
}


def check_adapter_tag(tag: str) -> None:
    """Raise `ConfigurationError` for an adapter tag with no implementation."""
    if tag not in ADAPTERS:
        supported = ", ".join(sorted(ADAPTERS))
        raise ConfigurationError(f"Unsupported adapter: {tag!r}. Supported adapters: {supported}")


def resolve_adapter(tag: str, client: KuyoClient) -> Adapter:
    """Instantiate the adapter registered under `tag`."""
    check_adapter_tag(tag)
    return ADAPTERS[tag](client)


__all__ = ["ADAPTERS", "Adapter", "PythonAdapter", "check_adapter_tag", "resolve_adapter"]
