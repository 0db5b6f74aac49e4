"""
Retry wrapper for MCP tool calls.

The Slack MCP server answers "cache is not ready" while it is still syncing
users and channels after start-up. Those errors are retried with exponential
backoff; every other failure is raised immediately.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .errors import ToolCallError

logger = logging.getLogger(__name__)

CACHE_NOT_READY = "cache is not ready"
DEFAULT_ERROR_MESSAGE = "Tool call failed"

ToolCall = Callable[[str, Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 6
    base_delay: float = 0.5
    max_delay: float = 16.0

    def delay_for(self, attempt_index: int) -> float:
        return min(self.base_delay * (2 ** attempt_index), self.max_delay)

    def schedule(self, retries: Optional[int] = None) -> List[float]:
        count = self.max_retries if retries is None else retries
        return [self.delay_for(index) for index in range(count)]


def is_cache_not_ready(message: str) -> bool:
    return CACHE_NOT_READY in message


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _first_text(content: Any) -> Optional[str]:
    for item in content or []:
        if _field(item, "type") == "text":
            return _field(item, "text")
    return None


def parse_tool_result(result: Any, tool: Optional[str] = None) -> Any:
    """
    Unwrap a tool-call envelope ``{isError, content: [{type, text}]}``.

    Raises ToolCallError with the first text item when the result is flagged
    as an error. Otherwise returns the first text item decoded as JSON, the
    raw text when it is not JSON, or the content list when there is no text.
    """
    content = _field(result, "content", [])
    text = _first_text(content)

    if _field(result, "isError", False):
        raise ToolCallError(text or DEFAULT_ERROR_MESSAGE, tool=tool)

    if text:
        try:
            return json.loads(text)
        except ValueError:
            return text
    return content


class RetryingInvoker:
    """
    Calls a tool and retries the one recognised transient failure.

    Default policy waits 0.5s, 1s, 2s, 4s, 8s, 16s (31.5s total) before
    giving up. The sleep function is injectable so tests can record the
    schedule without waiting.
    """

    def __init__(
        self,
        call: ToolCall,
        policy: Optional[RetryPolicy] = None,
        classifier: Callable[[str], bool] = is_cache_not_ready,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._call = call
        self.policy = policy or RetryPolicy()
        self._classifier = classifier
        self._sleep = sleep

    async def invoke(self, name: str, arguments: Dict[str, Any], retries: Optional[int] = None) -> Any:
        remaining = self.policy.max_retries if retries is None else retries
        attempt = 0
        waited = 0.0

        while True:
            try:
                raw = await self._call(name, arguments)
                return parse_tool_result(raw, tool=name)
            except ToolCallError as exc:
                exc.attempts = attempt + 1
                if remaining <= 0 or not self._classifier(exc.message):
                    if attempt:
                        logger.error(
                            f"Tool {name} failed after {attempt + 1} attempts "
                            f"({waited:g}s waited): {exc.message}"
                        )
                    raise

                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"Tool {name} not ready (attempt {attempt + 1}), retrying in {delay:g}s"
                )
                await self._sleep(delay)
                waited += delay
                remaining -= 1
                attempt += 1
