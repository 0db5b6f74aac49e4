#!/usr/bin/env python3
"""
Slack Web API Client — direct HTTP calls
Used where the MCP server is unavailable or unreliable on cold start.

Implements:
- conversations_list(limit, cursor, types) -> dict
- search_messages(query, count) -> dict
- users_list(limit, cursor) -> dict
- users_info(user_id) -> dict
- reactions_add(channel, timestamp, name) -> dict
- chat_post_message(channel, text, token) -> dict
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from .errors import APITimeoutError, RateLimitedError, SlackAPIError

logger = logging.getLogger(__name__)

BASE_URL = "https://slack.com/api"

DEFAULT_CHANNEL_TYPES = "public_channel,private_channel"
MAX_PAGE_LIMIT = 1000

# Operation-specific hints for Slack error codes
SCOPE_HINTS = {
    "conversations.list": "Channel listing requires channels:read scope.",
    "search.messages": "Search requires search:read scope.",
    "users.list": "User listing requires users:read scope.",
    "users.info": "User lookup requires users:read scope.",
    "reactions.add": "Adding reactions requires reactions:write scope.",
    "chat.postMessage": "Posting requires chat:write scope.",
}

TOKEN_TYPE_HINTS = {
    "conversations.list": "Channel listing requires a user token (xoxp-) or bot token (xoxb-).",
    "search.messages": "Search requires a user token (xoxp-), not a bot token.",
}


class SlackWebAPI:
    """
    Thin Slack Web API client.

    Design principles:
    - Every call is bounded by a fixed timeout
    - Remote rejections raise SlackAPIError with the Slack error code
    - No retries here; callers decide
    - requests runs in a worker thread so awaiting a call never blocks the loop
    """

    DEFAULT_TIMEOUT = 30

    def __init__(self, token: str, timeout: float = None):
        self.token = token
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._request_count = 0
        self._error_count = 0

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token or self.token}",
            "Content-Type": "application/json; charset=utf-8",
        }

    def _request(self, method: str, api_method: str, token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        """Make an authenticated call. Returns the decoded body when ok is true."""
        url = f"{BASE_URL}/{api_method}"
        self._request_count += 1

        try:
            resp = requests.request(
                method, url,
                headers=self._headers(token),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.Timeout:
            self._error_count += 1
            logger.error(f"Slack API timeout: {api_method} (>{self.timeout}s)")
            raise APITimeoutError(self.timeout)
        except requests.ConnectionError as e:
            self._error_count += 1
            logger.error(f"Slack API connection error: {api_method}: {e}")
            raise SlackAPIError(f"Slack API connection error: {e}", error="connection_error")

        if not resp.ok:
            self._error_count += 1
            logger.warning(f"Slack API HTTP error: {api_method} -> {resp.status_code}")
            if resp.status_code == 429:
                raise RateLimitedError(resp.headers.get("Retry-After", "unknown"))
            raise SlackAPIError(f"Slack API HTTP error: {resp.status_code}", status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError:
            self._error_count += 1
            raise SlackAPIError(f"Slack API returned non-JSON response for {api_method}", status_code=resp.status_code)

        if not body.get("ok"):
            self._error_count += 1
            raise self._rejection(api_method, body.get("error", "unknown_error"), resp)

        return body

    @staticmethod
    def _rejection(api_method: str, error: str, resp: requests.Response) -> SlackAPIError:
        logger.warning(f"Slack API rejected {api_method}: {error}")
        if error == "ratelimited":
            return RateLimitedError(resp.headers.get("Retry-After", "unknown"))
        if error == "missing_scope" and api_method in SCOPE_HINTS:
            return SlackAPIError(
                f"{SCOPE_HINTS[api_method]} Update your Slack app OAuth permissions.",
                error=error,
            )
        if error == "not_allowed_token_type" and api_method in TOKEN_TYPE_HINTS:
            return SlackAPIError(TOKEN_TYPE_HINTS[api_method], error=error)
        return SlackAPIError(f"Slack API error: {error}", error=error)

    async def _call(self, method: str, api_method: str, **kwargs) -> Dict[str, Any]:
        return await asyncio.to_thread(self._request, method, api_method, **kwargs)

    # ── Reads ────────────────────────────────────────────────────

    async def conversations_list(
        self, limit: int = None, cursor: str = None, types: str = None
    ) -> Dict[str, Any]:
        params = {
            "types": types or DEFAULT_CHANNEL_TYPES,
            "exclude_archived": "true",
        }
        if limit:
            params["limit"] = min(limit, MAX_PAGE_LIMIT)
        if cursor:
            params["cursor"] = cursor
        return await self._call("GET", "conversations.list", params=params)

    async def search_messages(self, query: str, count: int = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"query": query}
        if count:
            params["count"] = count
        return await self._call("GET", "search.messages", params=params)

    async def users_list(self, limit: int = None, cursor: str = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if limit:
            params["limit"] = limit
        if cursor:
            params["cursor"] = cursor
        return await self._call("GET", "users.list", params=params)

    async def users_info(self, user_id: str) -> Dict[str, Any]:
        return await self._call("GET", "users.info", params={"user": user_id})

    # ── Writes ───────────────────────────────────────────────────

    async def reactions_add(self, channel: str, timestamp: str, name: str) -> Dict[str, Any]:
        return await self._call(
            "POST", "reactions.add",
            json={"channel": channel, "timestamp": timestamp, "name": name},
        )

    async def chat_post_message(self, channel: str, text: str, token: str = None) -> Dict[str, Any]:
        return await self._call(
            "POST", "chat.postMessage",
            token=token,
            json={"channel": channel, "text": text},
        )

    def get_stats(self) -> Dict[str, int]:
        return {"requests": self._request_count, "errors": self._error_count}
