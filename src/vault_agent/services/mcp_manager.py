"""MCP client lifecycle and tool routing manager."""

from __future__ import annotations

import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from ..config import McpServerConfig

logger = logging.getLogger(__name__)


class ToolNotFoundError(LookupError):
    """The model asked for a tool that no server registered."""


class ServerNotConnectedError(ConnectionError):
    """The tool's owning server is not (or no longer) connected."""


@dataclass
class McpTool:
    server_name: str
    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)


class McpManager:
    def __init__(self, server_configs: list[McpServerConfig], quiet: bool = False) -> None:
        self._configs = {c.name: c for c in server_configs}
        self._quiet = quiet
        self._stacks: dict[str, AsyncExitStack] = {}
        self._sessions: dict[str, Any] = {}
        self._tools: list[McpTool] = []
        self._tool_to_server: dict[str, str] = {}
        self._server_status: dict[str, dict[str, Any]] = {}
        self._devnull: Any = None

    @property
    def server_names(self) -> list[str]:
        return list(self._configs)

    async def connect(self) -> None:
        """Connect every configured server; a failing server is logged and skipped."""
        for name, config in self._configs.items():
            try:
                await self._connect_server(config)
            except Exception as e:
                logger.warning("Failed to connect to MCP server '%s': %s", name, e)
                self._server_status[name] = {"status": "error", "tool_count": 0, "error_message": str(e)}

    async def _connect_server(self, config: McpServerConfig) -> None:
        env = {**os.environ, **config.env} if config.env else None
        server_params = StdioServerParameters(command=config.command, args=config.args, env=env)

        stack = AsyncExitStack()
        try:
            if self._quiet:
                if self._devnull is None:
                    self._devnull = open(os.devnull, "w")
                transport = await stack.enter_async_context(stdio_client(server_params, errlog=self._devnull))
            else:
                transport = await stack.enter_async_context(stdio_client(server_params))
            read_stream, write_stream = transport
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await session.initialize()
            tools_result = await session.list_tools()
        except BaseException:
            await stack.aclose()
            raise

        self._stacks[config.name] = stack
        self._sessions[config.name] = session

        tool_count = 0
        for tool in tools_result.tools:
            if tool.name in self._tool_to_server:
                logger.warning(
                    "Tool '%s' from '%s' shadows the one from '%s'",
                    tool.name,
                    config.name,
                    self._tool_to_server[tool.name],
                )
                self._tools = [t for t in self._tools if t.name != tool.name]
            self._tools.append(
                McpTool(
                    server_name=config.name,
                    name=tool.name,
                    description=tool.description or "",
                    input_schema=dict(tool.inputSchema or {}),
                )
            )
            self._tool_to_server[tool.name] = config.name
            tool_count += 1

        self._server_status[config.name] = {"status": "connected", "tool_count": tool_count}
        logger.info("MCP server '%s' connected with %d tools", config.name, tool_count)

    async def disconnect(self) -> None:
        for name, stack in list(self._stacks.items()):
            try:
                await stack.aclose()
            except Exception as e:
                logger.warning("Error disconnecting from MCP server '%s': %s", name, e)
        self._stacks.clear()
        self._sessions.clear()
        self._tools = []
        self._tool_to_server.clear()
        self._server_status.clear()
        if self._devnull is not None:
            self._devnull.close()
            self._devnull = None

    def get_tools(self) -> list[McpTool]:
        return self._tools

    def get_openai_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in self._tools
        ]

    def get_tool_server_name(self, tool_name: str) -> str:
        return self._tool_to_server.get(tool_name, "unknown")

    def tools_by_server(self) -> dict[str, list[McpTool]]:
        """Tools grouped by the server that registered them, in config order."""
        grouped: dict[str, list[McpTool]] = {name: [] for name in self._configs}
        for tool in self._tools:
            grouped.setdefault(tool.server_name, []).append(tool)
        return grouped

    def list_connected_servers(self) -> list[str]:
        return list(self._sessions)

    def get_server_statuses(self) -> dict[str, dict[str, Any]]:
        result = {}
        for name in self._configs:
            status = self._server_status.get(name, {"status": "disconnected", "tool_count": 0})
            result[name] = {"name": name, **status}
        return result

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> str:
        server_name = self._tool_to_server.get(tool_name)
        if server_name is None:
            raise ToolNotFoundError(f"Tool not found: {tool_name}")
        session = self._sessions.get(server_name)
        if session is None:
            raise ServerNotConnectedError(f"Server not connected: {server_name}")

        result = await session.call_tool(tool_name, arguments)

        content = getattr(result, "content", None)
        if content:
            texts = [item.text for item in content if getattr(item, "type", None) == "text"]
            return "\n".join(texts)
        if hasattr(result, "model_dump_json"):
            return result.model_dump_json()
        return str(result)
