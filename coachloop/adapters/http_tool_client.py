"""HTTP client for remotely hosted tools (LLM, speech, player stats).

Each tool is called as ``POST {base_url}/tools/{tool_name}`` with a JSON body
``{"payload": ..., "context": ...}``. The response body is either a ToolResult
shaped object (``success``/``data``/``error``) or bare data.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from coachloop.adapters.tool_registry import LocalToolRegistry
from coachloop.config.settings import get_settings
from coachloop.contracts import ToolResult
from coachloop.core.errors import ToolExecutionError
from coachloop.core.observability import trace_adapter
from coachloop.core.ports import ToolPort
from coachloop.core.services.decision_rules import CALL_LLM, GET_PLAYER_STATS, TEXT_TO_SPEECH

logger = logging.getLogger(__name__)

REMOTE_TOOLS = (CALL_LLM, TEXT_TO_SPEECH, GET_PLAYER_STATS)


class RemoteToolClient(ToolPort):
    def __init__(
        self,
        base_url: str | None = None,
        *,
        tools: tuple[str, ...] | list[str] = REMOTE_TOOLS,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        cfg = get_settings()
        self._base_url = (base_url or cfg.remote_tools_base_url or "").rstrip("/")
        self._api_key = api_key if api_key is not None else cfg.remote_tools_api_key
        self._timeout = timeout if timeout is not None else cfg.remote_tools_timeout_seconds
        self._tools = list(tools)
        self._session: aiohttp.ClientSession | None = None
        self._session_loop: asyncio.AbstractEventLoop | None = None

    @property
    def configured(self) -> bool:
        return bool(self._base_url)

    def has_tool(self, tool_name: str) -> bool:
        return self.configured and tool_name in self._tools

    def list_tools(self) -> list[str]:
        return list(self._tools) if self.configured else []

    def bind(self, registry: LocalToolRegistry) -> LocalToolRegistry:
        """Expose every remote tool through a local registry."""
        for tool_name in self.list_tools():
            registry.register(tool_name, self._handler(tool_name))
        return registry

    def _handler(self, tool_name: str):
        async def call(payload: dict[str, Any], context: dict[str, Any]) -> ToolResult:
            return await self.execute(tool_name, payload, context)

        return call

    async def _ensure_session(self) -> aiohttp.ClientSession:
        loop = asyncio.get_running_loop()
        session_invalid = (
            self._session is None
            or self._session.closed
            or self._session_loop is None
            or self._session_loop is not loop
        )
        if session_invalid:
            if self._session is not None and not self._session.closed:
                try:
                    await self._session.close()
                except Exception as exc:
                    logger.debug("remote_tools_session_close_failed", extra={"error": str(exc)})
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else None
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout), headers=headers
            )
            self._session_loop = loop
        return self._session

    async def close(self) -> None:
        try:
            if self._session is not None and not self._session.closed:
                await self._session.close()
        finally:
            self._session = None
            self._session_loop = None

    @trace_adapter
    async def execute(
        self, tool_name: str, payload: dict[str, Any], context: dict[str, Any]
    ) -> ToolResult:
        if not self.has_tool(tool_name):
            return ToolResult(success=False, error=f"Remote tool not available: {tool_name}")

        url = f"{self._base_url}/tools/{tool_name}"
        session = await self._ensure_session()
        try:
            async with session.post(url, json={"payload": payload, "context": context}) as resp:
                if resp.status >= 500 or resp.status == 429:
                    raise ToolExecutionError(tool_name, f"remote tool returned {resp.status}")
                if resp.status != 200:
                    return ToolResult(
                        success=False, error=f"HTTP {resp.status}: {await resp.text()}"
                    )
                body = await resp.json()
        except aiohttp.ClientError as exc:
            raise ToolExecutionError(tool_name, f"remote call failed: {exc}") from exc

        if isinstance(body, dict) and "success" in body:
            return ToolResult.model_validate(
                {"success": body["success"], "data": body.get("data"), "error": body.get("error")}
            )
        return ToolResult(success=True, data=body if isinstance(body, dict) else {"value": body})
