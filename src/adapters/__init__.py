"""Adapters — the only code that starts external programs.

Step handlers and services build ``Action``s and dispatch them through
an ``AdapterRegistry``; tests swap in ``MockAdapter``.
"""

from src.adapters.base import Adapter, ExecutionContext
from src.adapters.mock import MockAdapter
from src.adapters.registry import AdapterRegistry, default_registry

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "default_registry",
]
