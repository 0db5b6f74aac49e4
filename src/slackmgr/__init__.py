"""
Slack Manager — Slack workspace operations via MCP server and Web API

Provides:
- SlackClient — cached calling layer with write invalidation
- McpToolBridge — MCP server subprocess channel
- SlackWebAPI — direct Slack Web API calls
- RetryingInvoker — warm-up retry for tool calls
"""

from .client import SlackClient
from .config import SlackConfig, load_config
from .errors import (
    APITimeoutError, ConfigurationError, McpServerError, RateLimitedError,
    SlackAPIError, SlackManagerError, ToolCallError,
)
from .mcp_bridge import McpToolBridge
from .retry import RetryingInvoker, RetryPolicy, is_cache_not_ready, parse_tool_result
from .web_api import SlackWebAPI

__all__ = [
    'SlackClient', 'SlackConfig', 'load_config',
    'SlackManagerError', 'ConfigurationError', 'ToolCallError',
    'SlackAPIError', 'RateLimitedError', 'APITimeoutError', 'McpServerError',
    'McpToolBridge', 'SlackWebAPI',
    'RetryingInvoker', 'RetryPolicy', 'is_cache_not_ready', 'parse_tool_result',
]
