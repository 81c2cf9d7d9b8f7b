"""Adapters — bindings for docker compose and git.

Public re-exports for convenient access.
"""

from stack_deploy.adapters.base import Adapter, ExecutionContext
from stack_deploy.adapters.mock import MockAdapter

__all__ = [
    "Adapter",
    "ExecutionContext",
    "MockAdapter",
]
