"""Exception types raised by the Slack manager."""

from __future__ import annotations

from typing import Optional


class SlackManagerError(Exception):
    """Base class for every error the client surfaces to callers."""


class ConfigurationError(SlackManagerError):
    """Required configuration or credential is missing or invalid."""


class ToolCallError(SlackManagerError):
    """The MCP server returned an error result for a tool call."""

    def __init__(self, message: str, tool: Optional[str] = None, attempts: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.tool = tool
        self.attempts = attempts


class SlackAPIError(SlackManagerError):
    """The Slack Web API rejected a request."""

    def __init__(self, message: str, error: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.error = error
        self.status_code = status_code


class RateLimitedError(SlackAPIError):
    def __init__(self, retry_after: str) -> None:
        super().__init__(
            f"Rate limited by Slack API. Retry after {retry_after} seconds.",
            error="ratelimited",
            status_code=429,
        )
        self.retry_after = retry_after


class APITimeoutError(SlackManagerError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"Slack API request timed out after {timeout:g} seconds.")
        self.timeout = timeout


class McpServerError(SlackManagerError):
    """The MCP server could not be started or broke the protocol."""

    def __init__(self, message: str, command: Optional[str] = None) -> None:
        super().__init__(message)
        self.command = command
