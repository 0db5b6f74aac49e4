#!/usr/bin/env python3
"""
Slack Manager CLI

Workspace operations via the Slack MCP server and Web API. Every command
prints its result as JSON on stdout; logs go to stderr.

Usage:
  slack-cli get-history --channel C0123456789 --limit 20
  slack-cli --no-cache search-messages --query "from:@alice deploy"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from .client import SlackClient
from .config import DEFAULT_CONFIG_PATH, load_config
from .errors import SlackManagerError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def _bounded_int(low: int, high: int) -> Callable[[str], int]:
    def _parse(value: str) -> int:
        try:
            ivalue = int(value)
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"invalid integer: {value}") from exc
        if not low <= ivalue <= high:
            raise argparse.ArgumentTypeError(f"value must be between {low} and {high}")
        return ivalue

    return _parse


def _non_empty(value: str) -> str:
    if not value.strip():
        raise argparse.ArgumentTypeError("value must not be empty")
    return value


async def _list_tools(client: SlackClient, args: argparse.Namespace) -> Any:
    tools = await client.list_tools()
    return [
        {"name": tool.name, "description": getattr(tool, "description", None)}
        for tool in tools
    ]


async def _cache_stats(client: SlackClient, args: argparse.Namespace) -> Any:
    return client.get_cache_stats().to_dict()


async def _cache_clear(client: SlackClient, args: argparse.Namespace) -> Any:
    return {"cleared": client.clear_cache()}


async def _cache_invalidate(client: SlackClient, args: argparse.Namespace) -> Any:
    return {"key": args.key, "invalidated": client.invalidate_cache_key(args.key)}


Handler = Callable[[SlackClient, argparse.Namespace], Awaitable[Any]]

HANDLERS: Dict[str, Handler] = {
    "list-tools": _list_tools,
    "list-channels": lambda c, a: c.list_channels(limit=a.limit),
    "get-history": lambda c, a: c.get_channel_history(a.channel, a.limit),
    "get-thread": lambda c, a: c.get_thread_replies(a.channel, a.thread),
    "post-message": lambda c, a: c.post_message(a.channel, a.text),
    "post-message-bot": lambda c, a: c.post_message_as_bot(a.channel, a.text),
    "reply-thread": lambda c, a: c.reply_to_thread(a.channel, a.thread, a.text),
    "add-reaction": lambda c, a: c.add_reaction(a.channel, a.timestamp, a.reaction),
    "get-users": lambda c, a: c.get_users(limit=a.limit),
    "get-user-profile": lambda c, a: c.get_user_profile(a.user),
    "search-messages": lambda c, a: c.search_messages(a.query, count=a.limit),
    "cache-stats": _cache_stats,
    "cache-clear": _cache_clear,
    "cache-invalidate": _cache_invalidate,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slack-cli",
        description="Slack workspace operations via MCP.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to config YAML/JSON (default: {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument("--no-cache", action="store_true", help="Skip cached results for this run.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>", required=True)

    subparsers.add_parser("list-tools", help="List all available MCP tools")

    cmd = subparsers.add_parser("list-channels", help="List public and private channels")
    cmd.add_argument("--limit", type=_bounded_int(1, 1000), help="Max channels to return")

    cmd = subparsers.add_parser("get-history", help="Get channel message history")
    cmd.add_argument("--channel", required=True, type=_non_empty, help="Channel ID (e.g., C0123456789)")
    cmd.add_argument("--limit", type=_bounded_int(1, 1000), help="Max messages to return")

    cmd = subparsers.add_parser("get-thread", help="Get thread replies")
    cmd.add_argument("--channel", required=True, type=_non_empty, help="Channel ID")
    cmd.add_argument("--thread", required=True, type=_non_empty, help="Thread timestamp")

    cmd = subparsers.add_parser("post-message", help="Post a message to a channel (as user)")
    cmd.add_argument("--channel", required=True, type=_non_empty, help="Channel ID")
    cmd.add_argument("--text", required=True, type=_non_empty, help="Message text")

    cmd = subparsers.add_parser("post-message-bot", help="Post a message to a channel (as bot)")
    cmd.add_argument("--channel", required=True, type=_non_empty, help="Channel ID")
    cmd.add_argument("--text", required=True, type=_non_empty, help="Message text")

    cmd = subparsers.add_parser("reply-thread", help="Reply to a thread")
    cmd.add_argument("--channel", required=True, type=_non_empty, help="Channel ID")
    cmd.add_argument("--thread", required=True, type=_non_empty, help="Thread timestamp")
    cmd.add_argument("--text", required=True, type=_non_empty, help="Reply text")

    cmd = subparsers.add_parser("add-reaction", help="Add a reaction to a message")
    cmd.add_argument("--channel", required=True, type=_non_empty, help="Channel ID")
    cmd.add_argument("--timestamp", required=True, type=_non_empty, help="Message timestamp")
    cmd.add_argument("--reaction", required=True, type=_non_empty, help="Reaction emoji name (without colons)")

    cmd = subparsers.add_parser("get-users", help="List workspace users")
    cmd.add_argument("--limit", type=_bounded_int(1, 1000), help="Max users to return")

    cmd = subparsers.add_parser("get-user-profile", help="Get a user's profile")
    cmd.add_argument("--user", required=True, type=_non_empty, help="User ID")

    cmd = subparsers.add_parser("search-messages", help="Search messages (requires user token)")
    cmd.add_argument("--query", required=True, type=_non_empty, help="Search query")
    cmd.add_argument("--limit", type=_bounded_int(1, 100), help="Max results")

    subparsers.add_parser("cache-stats", help="Show cache hit/miss statistics")
    subparsers.add_parser("cache-clear", help="Clear all cached entries")

    cmd = subparsers.add_parser("cache-invalidate", help="Invalidate one cache key")
    cmd.add_argument("--key", required=True, type=_non_empty, help="Cache key (e.g., history:channel=C1)")

    return parser


async def run_command(client: SlackClient, args: argparse.Namespace) -> Any:
    handler = HANDLERS[args.command]
    async with client:
        return await handler(client, args)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        format=LOG_FORMAT,
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
    )

    try:
        config = load_config(args.config)
        client = SlackClient(config)
        if args.no_cache:
            client.disable_cache()
        result = asyncio.run(run_command(client, args))
    except SlackManagerError as exc:
        logger.debug(f"command {args.command} failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
