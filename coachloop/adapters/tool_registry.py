"""In-process tool registry implementing ToolPort."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from coachloop.contracts import ToolResult
from coachloop.core.ports import ToolPort

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any], dict[str, Any]], Awaitable["dict[str, Any] | ToolResult"]]


class LocalToolRegistry(ToolPort):
    """Maps tool names to async handlers.

    A handler receives ``(payload, context)`` and returns either a plain
    dict (wrapped as a successful ToolResult) or a ToolResult. Exceptions
    propagate so the executor can retry and fall back.
    """

    def __init__(self, handlers: dict[str, ToolHandler] | None = None) -> None:
        self._handlers: dict[str, ToolHandler] = dict(handlers or {})

    def register(self, tool_name: str, handler: ToolHandler) -> None:
        if tool_name in self._handlers:
            logger.info("tool_replaced", extra={"tool": tool_name})
        self._handlers[tool_name] = handler

    def unregister(self, tool_name: str) -> bool:
        return self._handlers.pop(tool_name, None) is not None

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._handlers

    def list_tools(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(
        self, tool_name: str, payload: dict[str, Any], context: dict[str, Any]
    ) -> ToolResult:
        handler = self._handlers.get(tool_name)
        if handler is None:
            return ToolResult(success=False, error=f"Unknown tool: {tool_name}")
        result = await handler(payload, context)
        if isinstance(result, ToolResult):
            return result
        return ToolResult(success=True, data=result)
