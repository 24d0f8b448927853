"""Adapter implementations for the coaching loop ports."""

from .http_tool_client import RemoteToolClient
from .in_memory_memory import InMemoryMemory
from .local_tools import LocalTools, build_local_registry
from .logging_delivery import LoggingDelivery
from .tool_registry import LocalToolRegistry

__all__ = [
    "InMemoryMemory",
    "LocalToolRegistry",
    "LocalTools",
    "LoggingDelivery",
    "RemoteToolClient",
    "build_local_registry",
]
