#!/usr/bin/env python3
"""
MCP Tool Bridge — Slack MCP Server over stdio

Spawns the configured MCP server (korotovsky/slack-mcp-server by default)
as a subprocess and talks to it through the MCP Python SDK.

Implements:
- connect() -> None (idempotent)
- list_tools() -> list of tool definitions
- call_tool(name, arguments) -> raw CallToolResult envelope
- close() -> None

Usage:
    bridge = McpToolBridge(config.mcp_server)
    result = await bridge.call_tool("conversations_history", {"channel_id": "C0123"})
    await bridge.close()
"""

import logging
import os
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from .config import McpServerConfig
from .errors import McpServerError

logger = logging.getLogger(__name__)

CLIENT_NAME = "slack-cli"


@dataclass
class ToolCallRecord:
    """One tool call made through the bridge."""
    tool: str
    is_error: bool
    duration_ms: float
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class McpToolBridge:
    """
    Subprocess tool-call channel.

    The server process inherits the current environment with the configured
    ``env`` entries (Slack tokens) layered on top. Calls are logged so the
    CLI can report what reached the server.
    """

    def __init__(self, server: McpServerConfig):
        self.server = server
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None
        self._call_log: List[ToolCallRecord] = []
        self._call_count = 0
        self._error_count = 0

        logger.info(f"McpToolBridge initialized (command={server.command})")

    @property
    def connected(self) -> bool:
        return self._session is not None

    def _server_params(self) -> StdioServerParameters:
        env = {**os.environ, **self.server.env}
        return StdioServerParameters(
            command=self.server.command,
            args=list(self.server.args),
            env=env,
        )

    async def connect(self) -> None:
        if self._session is not None:
            return

        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(self._server_params()))
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except (OSError, McpError) as exc:
            await stack.aclose()
            raise McpServerError(
                f"Failed to start MCP server '{self.server.command}': {exc}",
                command=self.server.command,
            ) from exc
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self._session = session
        logger.info(f"MCP server started: {self.server.command} {' '.join(self.server.args)}")

    async def close(self) -> None:
        if self._stack is None:
            return
        try:
            await self._stack.aclose()
        finally:
            self._stack = None
            self._session = None
            logger.info("MCP server connection closed")

    async def list_tools(self) -> List[Any]:
        await self.connect()
        try:
            result = await self._session.list_tools()
        except McpError as exc:
            raise McpServerError(f"MCP list_tools failed: {exc}", command=self.server.command) from exc
        return list(result.tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Call a tool and return the raw result envelope."""
        await self.connect()

        start = time.monotonic()
        self._call_count += 1
        try:
            result = await self._session.call_tool(name, arguments=arguments)
        except McpError as exc:
            self._error_count += 1
            raise McpServerError(f"MCP tool {name} failed: {exc}", command=self.server.command) from exc
        is_error = bool(getattr(result, "isError", False))
        if is_error:
            self._error_count += 1

        record = ToolCallRecord(
            tool=name,
            is_error=is_error,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        self._call_log.append(record)
        logger.debug(f"Tool {name} -> {'error' if is_error else 'ok'} ({record.duration_ms:.0f}ms)")
        return result

    def get_call_log(self, limit: int = 20) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self._call_log[-limit:]]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "connected": self.connected,
            "calls": self._call_count,
            "errors": self._error_count,
        }
