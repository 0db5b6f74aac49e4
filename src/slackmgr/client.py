#!/usr/bin/env python3
"""
Slack Manager Client — workspace operations via MCP server and direct API

Channel history, thread replies and user-posted messages go through the MCP
server (subprocess tool calls, retried while the server warms up). Channel
listing, search, reactions, bot posts and user lookups use the Slack Web API
directly.

Reads are cached per operation:
  history / thread / search     → 5 minutes
  channels / user_profile       → 15 minutes
  users                         → 1 hour

Writes invalidate the reads they make stale instead of patching cached lists:
  post_message / post_message_as_bot → every history entry for that channel
  reply_to_thread                    → that thread's replies
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from cache import TTL, CacheStats, TTLCache, build_cache_key, match_key

from .config import SlackConfig
from .mcp_bridge import McpToolBridge
from .observability import CallLogRecord
from .retry import RetryingInvoker, RetryPolicy
from .web_api import SlackWebAPI

logger = logging.getLogger(__name__)


class SlackClient:
    """
    Calling layer over the cache, the MCP bridge and the Web API.

    The cache is owned by the caller: pass one in to share or inspect it,
    or let the client build one from config.
    """

    def __init__(
        self,
        config: SlackConfig,
        cache: Optional[TTLCache] = None,
        bridge: Optional[McpToolBridge] = None,
        web_api: Optional[SlackWebAPI] = None,
        invoker: Optional[RetryingInvoker] = None,
    ):
        self.config = config
        if cache is None:
            cache = TTLCache(
                namespace=config.cache.namespace,
                default_ttl=config.cache.default_ttl_sec,
            )
        self.cache = cache
        self.bridge = bridge or McpToolBridge(config.mcp_server)
        self._web_api = web_api
        self.invoker = invoker or RetryingInvoker(
            self.bridge.call_tool,
            policy=RetryPolicy(
                max_retries=config.retry.max_retries,
                base_delay=config.retry.base_delay_ms / 1000,
                max_delay=config.retry.max_delay_ms / 1000,
            ),
        )
        self._cache_disabled = False
        self.call_log: List[CallLogRecord] = []

        if not config.cache.enabled:
            self.disable_cache()

    # ── Cache control ────────────────────────────────────────────

    def disable_cache(self) -> None:
        self._cache_disabled = True
        self.cache.disable()

    def enable_cache(self) -> None:
        self._cache_disabled = False
        self.cache.enable()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self) -> int:
        return self.cache.clear()

    def invalidate_cache_key(self, key: str) -> bool:
        return self.cache.invalidate(key)

    # ── Connection management ────────────────────────────────────

    async def connect(self) -> None:
        await self.bridge.connect()

    async def disconnect(self) -> None:
        await self.bridge.close()

    async def __aenter__(self) -> "SlackClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # ── Internals ────────────────────────────────────────────────

    def _web(self) -> SlackWebAPI:
        """Web API client; resolving the token here fails before any request."""
        if self._web_api is None:
            self._web_api = SlackWebAPI(self.config.token(), timeout=self.config.request_timeout_sec)
        return self._web_api

    def _record(
        self, operation: str, transport: str, start: float,
        cache_hit: bool = False, error: Optional[str] = None, invalidated: int = 0,
    ) -> None:
        record = CallLogRecord(
            operation=operation,
            transport=transport,
            cache_hit=cache_hit,
            ok=error is None,
            latency_ms=(time.monotonic() - start) * 1000,
            error=error,
            invalidated=invalidated,
        )
        self.call_log.append(record)
        logger.debug(f"call {record.to_dict()}")

    async def _cached(
        self,
        operation: str,
        transport: str,
        tag: str,
        params: Dict[str, Any],
        ttl: float,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        key = build_cache_key(tag, params)
        hits_before = self.cache.get_stats().hits
        start = time.monotonic()
        try:
            value = await self.cache.get_or_fetch(
                key, fetch, ttl=ttl, bypass_cache=self._cache_disabled,
            )
        except Exception as exc:
            self._record(operation, transport, start, error=str(exc))
            raise

        hit = self.cache.get_stats().hits > hits_before
        self._record(operation, "cache" if hit else transport, start, cache_hit=hit)
        return value

    async def _write(
        self,
        operation: str,
        transport: str,
        send: Callable[[], Awaitable[Any]],
        invalidate: Callable[[], int],
    ) -> Any:
        start = time.monotonic()
        try:
            result = await send()
        except Exception as exc:
            self._record(operation, transport, start, error=str(exc))
            raise

        invalidated = int(invalidate())
        self._record(operation, transport, start, invalidated=invalidated)
        return result

    # ── MCP tools ────────────────────────────────────────────────

    async def list_tools(self) -> List[Any]:
        return await self.bridge.list_tools()

    async def call_tool(self, name: str, arguments: Dict[str, Any], retries: Optional[int] = None) -> Any:
        """Call a tool with warm-up retry and return its parsed result."""
        return await self.invoker.invoke(name, arguments, retries=retries)

    # ── Channels ─────────────────────────────────────────────────

    async def list_channels(self, limit: int = None, cursor: str = None) -> Any:
        return await self._cached(
            "list_channels", "http", "channels",
            {"limit": limit, "cursor": cursor},
            TTL.FIFTEEN_MINUTES,
            lambda: self._web().conversations_list(limit=limit, cursor=cursor),
        )

    async def get_channel_history(self, channel_id: str, limit: int = None) -> Any:
        async def fetch():
            args: Dict[str, Any] = {"channel_id": channel_id}
            if limit:
                args["limit"] = limit
            return await self.call_tool("conversations_history", args)

        return await self._cached(
            "get_channel_history", "mcp", "history",
            {"channel": channel_id, "limit": limit},
            TTL.FIVE_MINUTES,
            fetch,
        )

    async def get_thread_replies(self, channel_id: str, thread_ts: str) -> Any:
        return await self._cached(
            "get_thread_replies", "mcp", "thread",
            {"channel": channel_id, "ts": thread_ts},
            TTL.FIVE_MINUTES,
            lambda: self.call_tool("conversations_replies", {
                "channel_id": channel_id,
                "thread_ts": thread_ts,
            }),
        )

    # ── Messages (write) ─────────────────────────────────────────

    async def post_message(self, channel_id: str, text: str) -> Any:
        """Post as the token's user. Invalidates the channel's history."""
        return await self._write(
            "post_message", "mcp",
            lambda: self.call_tool("conversations_add_message", {
                "channel_id": channel_id,
                "payload": text,
            }),
            lambda: self.cache.invalidate_pattern(match_key("history", channel=channel_id)),
        )

    async def post_message_as_bot(self, channel_id: str, text: str) -> Any:
        """Post with the bot token, bypassing the MCP server."""
        token = self.config.bot_token()
        return await self._write(
            "post_message_as_bot", "http",
            lambda: self._web().chat_post_message(channel_id, text, token=token),
            lambda: self.cache.invalidate_pattern(match_key("history", channel=channel_id)),
        )

    async def reply_to_thread(self, channel_id: str, thread_ts: str, text: str) -> Any:
        return await self._write(
            "reply_to_thread", "mcp",
            lambda: self.call_tool("conversations_add_message", {
                "channel_id": channel_id,
                "thread_ts": thread_ts,
                "payload": text,
            }),
            lambda: self.cache.invalidate(build_cache_key("thread", {"channel": channel_id, "ts": thread_ts})),
        )

    # ── Search ───────────────────────────────────────────────────

    async def search_messages(self, query: str, count: int = None) -> Any:
        """Search messages. Needs a user token (xoxp-) with search:read."""
        return await self._cached(
            "search_messages", "http", "search",
            {"query": query, "count": count},
            TTL.FIVE_MINUTES,
            lambda: self._web().search_messages(query, count=count),
        )

    # ── Reactions (write) ────────────────────────────────────────

    async def add_reaction(self, channel_id: str, timestamp: str, reaction: str) -> Any:
        return await self._write(
            "add_reaction", "http",
            lambda: self._web().reactions_add(channel_id, timestamp, reaction),
            lambda: 0,
        )

    # ── Users ────────────────────────────────────────────────────

    async def get_users(self, limit: int = None, cursor: str = None) -> Any:
        return await self._cached(
            "get_users", "http", "users",
            {"limit": limit, "cursor": cursor},
            TTL.HOUR,
            lambda: self._web().users_list(limit=limit, cursor=cursor),
        )

    async def get_user_profile(self, user_id: str) -> Any:
        return await self._cached(
            "get_user_profile", "http", "user_profile",
            {"id": user_id},
            TTL.FIFTEEN_MINUTES,
            lambda: self._web().users_info(user_id),
        )
