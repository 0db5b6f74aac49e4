#!/usr/bin/env python3
"""
Unit tests for SlackClient: caching tiers and write invalidation
"""

import pytest
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from cache import TTL, TTLCache
from slackmgr import client as client_module
from slackmgr.client import SlackClient
from slackmgr.config import SlackConfig
from slackmgr.errors import ConfigurationError, SlackAPIError, ToolCallError
from slackmgr.retry import RetryingInvoker


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeBridge:
    """Stands in for McpToolBridge; answers tools from a dict."""

    def __init__(self, answers=None):
        self.answers = answers or {}
        self.calls = []
        self.closed = False

    async def call_tool(self, name, arguments):
        self.calls.append((name, dict(arguments)))
        text = self.answers.get(name, '{"ok": true}')
        return {"isError": False, "content": [{"type": "text", "text": text}]}

    async def list_tools(self):
        return ["conversations_history"]

    async def connect(self):
        pass

    async def close(self):
        self.closed = True


def make_config(**env):
    return SlackConfig.from_dict({
        "mcp_server": {"command": "slack-mcp-server", "env": env},
    })


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bridge():
    return FakeBridge({
        "conversations_history": '{"messages": ["m1"]}',
        "conversations_replies": '{"messages": ["parent", "reply"]}',
    })


@pytest.fixture
def web():
    api = MagicMock()
    api.conversations_list = AsyncMock(return_value={"ok": True, "channels": [{"id": "C1"}]})
    api.search_messages = AsyncMock(return_value={"ok": True, "messages": {"matches": []}})
    api.users_list = AsyncMock(return_value={"ok": True, "members": []})
    api.users_info = AsyncMock(return_value={"ok": True, "user": {"id": "U1"}})
    api.reactions_add = AsyncMock(return_value={"ok": True})
    api.chat_post_message = AsyncMock(return_value={"ok": True, "ts": "9.9"})
    return api


@pytest.fixture
def client(bridge, web, clock):
    cache = TTLCache("slack-manager", clock=clock)
    return SlackClient(
        make_config(SLACK_MCP_XOXP_TOKEN="xoxp-1", SLACK_MCP_XOXB_TOKEN="xoxb-1"),
        cache=cache,
        bridge=bridge,
        web_api=web,
    )


class TestCachedReads:

    @pytest.mark.asyncio
    async def test_history_cached(self, client, bridge):
        first = await client.get_channel_history("C1", limit=10)
        second = await client.get_channel_history("C1", limit=10)

        assert first == second == {"messages": ["m1"]}
        assert bridge.calls == [("conversations_history", {"channel_id": "C1", "limit": 10})]
        assert "history:channel=C1,limit=10" in client.cache

    @pytest.mark.asyncio
    async def test_history_ttl_tier(self, client, bridge, clock):
        await client.get_channel_history("C1")
        clock.now += TTL.FIVE_MINUTES + 1
        await client.get_channel_history("C1")

        assert len(bridge.calls) == 2

    @pytest.mark.asyncio
    async def test_channels_ttl_tier(self, client, web, clock):
        await client.list_channels(limit=50)
        clock.now += TTL.FIVE_MINUTES + 1
        await client.list_channels(limit=50)
        assert web.conversations_list.await_count == 1

        clock.now += TTL.FIFTEEN_MINUTES
        await client.list_channels(limit=50)
        assert web.conversations_list.await_count == 2

    @pytest.mark.asyncio
    async def test_users_cached_for_an_hour(self, client, web, clock):
        await client.get_users()
        clock.now += TTL.HOUR - 1
        await client.get_users()
        assert web.users_list.await_count == 1

    @pytest.mark.asyncio
    async def test_profile_and_search_keys(self, client, web):
        await client.get_user_profile("U1")
        await client.search_messages("deploy", count=5)

        assert "user_profile:id=U1" in client.cache
        assert "search:count=5,query=deploy" in client.cache

    @pytest.mark.asyncio
    async def test_disable_cache_refetches(self, client, bridge):
        await client.get_thread_replies("C1", "123")
        client.disable_cache()
        await client.get_thread_replies("C1", "123")

        assert len(bridge.calls) == 2
        stats = client.get_cache_stats()
        assert stats.hits == 0
        assert stats.misses == 2

        client.enable_cache()
        await client.get_thread_replies("C1", "123")
        assert len(bridge.calls) == 2

    def test_disabled_by_config(self, bridge, web):
        config = SlackConfig.from_dict({
            "mcp_server": {"command": "x"},
            "cache": {"enabled": False},
        })
        client = SlackClient(config, bridge=bridge, web_api=web)
        assert not client.cache.enabled


class TestWriteInvalidation:

    @pytest.mark.asyncio
    async def test_post_message_invalidates_channel_history(self, client, bridge):
        await client.get_channel_history("C1", limit=10)
        await client.get_channel_history("C1", limit=50)
        await client.get_channel_history("C2", limit=10)
        await client.get_thread_replies("C1", "123")

        await client.post_message("C1", "hello")

        assert bridge.calls[-1] == ("conversations_add_message", {"channel_id": "C1", "payload": "hello"})
        assert "history:channel=C1,limit=10" not in client.cache
        assert "history:channel=C1,limit=50" not in client.cache
        assert "history:channel=C2,limit=10" in client.cache
        assert 'thread:channel=C1,ts="123"' in client.cache

    @pytest.mark.asyncio
    async def test_post_as_bot_uses_bot_token_and_invalidates(self, client, web):
        await client.get_channel_history("C1")

        await client.post_message_as_bot("C1", "beep")

        web.chat_post_message.assert_awaited_once_with("C1", "beep", token="xoxb-1")
        assert "history:channel=C1" not in client.cache

    @pytest.mark.asyncio
    async def test_reply_invalidates_only_that_thread(self, client, bridge):
        await client.get_thread_replies("C1", "123")
        await client.get_thread_replies("C1", "456")
        await client.get_channel_history("C1")

        await client.reply_to_thread("C1", "123", "ack")

        assert bridge.calls[-1] == (
            "conversations_add_message",
            {"channel_id": "C1", "thread_ts": "123", "payload": "ack"},
        )
        assert 'thread:channel=C1,ts="123"' not in client.cache
        assert 'thread:channel=C1,ts="456"' in client.cache
        assert "history:channel=C1" in client.cache

    @pytest.mark.asyncio
    async def test_failed_write_keeps_cache(self, client, web):
        await client.get_channel_history("C1")
        web.chat_post_message.side_effect = SlackAPIError("Slack API error: not_in_channel", error="not_in_channel")

        with pytest.raises(SlackAPIError):
            await client.post_message_as_bot("C1", "beep")

        assert "history:channel=C1" in client.cache
        assert client.call_log[-1].ok is False

    @pytest.mark.asyncio
    async def test_add_reaction(self, client, web):
        result = await client.add_reaction("C1", "1.2", "eyes")
        assert result == {"ok": True}
        web.reactions_add.assert_awaited_once_with("C1", "1.2", "eyes")


class TestErrors:

    @pytest.mark.asyncio
    async def test_missing_token_fails_before_request(self, bridge):
        client = SlackClient(make_config(), bridge=bridge)

        with pytest.raises(ConfigurationError, match="No Slack token configured"):
            await client.list_channels()
        assert len(client.cache) == 0

    @pytest.mark.asyncio
    async def test_missing_bot_token(self, bridge, web):
        client = SlackClient(make_config(SLACK_MCP_XOXP_TOKEN="xoxp-1"), bridge=bridge, web_api=web)

        with pytest.raises(ConfigurationError, match="bot token"):
            await client.post_message_as_bot("C1", "x")
        web.chat_post_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tool_error_not_cached(self, web):
        class ErrorBridge(FakeBridge):
            async def call_tool(self, name, arguments):
                self.calls.append((name, arguments))
                return {"isError": True, "content": [{"type": "text", "text": "channel_not_found"}]}

        bridge = ErrorBridge()
        client = SlackClient(make_config(SLACK_MCP_XOXP_TOKEN="x"), bridge=bridge, web_api=web)

        with pytest.raises(ToolCallError, match="channel_not_found"):
            await client.get_channel_history("C404")
        assert "history:channel=C404" not in client.cache

    @pytest.mark.asyncio
    async def test_warm_up_retried_through_client(self, web):
        class WarmingBridge(FakeBridge):
            async def call_tool(self, name, arguments):
                self.calls.append((name, arguments))
                if len(self.calls) < 3:
                    return {"isError": True, "content": [{"type": "text", "text": "cache is not ready"}]}
                return {"isError": False, "content": [{"type": "text", "text": '{"messages": []}'}]}

        delays = []

        async def sleep(delay):
            delays.append(delay)

        bridge = WarmingBridge()
        invoker = RetryingInvoker(bridge.call_tool, sleep=sleep)
        client = SlackClient(make_config(), bridge=bridge, web_api=web, invoker=invoker)

        assert await client.get_channel_history("C1") == {"messages": []}
        assert delays == [0.5, 1.0]


class TestCacheControlAndLog:

    def test_uses_given_empty_cache(self, bridge, web):
        cache = TTLCache("shared")
        client = SlackClient(make_config(), cache=cache, bridge=bridge, web_api=web)
        assert client.cache is cache

    @pytest.mark.asyncio
    async def test_clear_and_invalidate_key(self, client):
        await client.get_channel_history("C1")
        await client.get_user_profile("U1")

        assert client.invalidate_cache_key("user_profile:id=U1") is True
        assert client.clear_cache() == 1

    @pytest.mark.asyncio
    async def test_call_log_marks_hits(self, client):
        await client.get_user_profile("U1")
        await client.get_user_profile("U1")

        first, second = client.call_log[-2:]
        assert (first.transport, first.cache_hit) == ("http", False)
        assert (second.transport, second.cache_hit) == ("cache", True)

    @pytest.mark.asyncio
    async def test_write_log_counts_invalidated(self, client):
        await client.get_channel_history("C1", limit=1)
        await client.get_channel_history("C1", limit=2)
        await client.post_message("C1", "hi")

        assert client.call_log[-1].invalidated == 2

    @pytest.mark.asyncio
    async def test_latency_ignores_wall_clock_steps(self, client, monkeypatch):
        wall = iter([1000.0, 900.0, 800.0, 700.0])
        ticks = iter([10.0, 10.25, 10.5, 10.75])
        monkeypatch.setattr(client_module, "time", SimpleNamespace(
            time=lambda: next(wall),
            monotonic=lambda: next(ticks),
        ))

        await client.get_user_profile("U1")

        record = client.call_log[-1]
        assert record.latency_ms == 250.0
        assert record.to_dict()["latency_ms"] == 250.0

    @pytest.mark.asyncio
    async def test_context_manager_closes_bridge(self, client, bridge):
        async with client:
            await client.list_tools()
        assert bridge.closed


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
