"""Configuration loader for the Slack manager."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml
from jsonschema import Draft7Validator

from cache import TTL

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("config/slack.yml")

CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["mcp_server"],
    "properties": {
        "mcp_server": {
            "type": "object",
            "required": ["command"],
            "properties": {
                "command": {"type": "string", "minLength": 1},
                "args": {"type": "array", "items": {"type": "string"}},
                "env": {"type": "object", "additionalProperties": {"type": "string"}},
            },
        },
        "cache": {
            "type": "object",
            "properties": {
                "namespace": {"type": "string", "minLength": 1},
                "default_ttl_sec": {"type": "number", "exclusiveMinimum": 0},
                "enabled": {"type": "boolean"},
            },
        },
        "request_timeout_sec": {"type": "number", "exclusiveMinimum": 0},
        "retry": {
            "type": "object",
            "properties": {
                "max_retries": {"type": "integer", "minimum": 0},
                "base_delay_ms": {"type": "number", "minimum": 0},
                "max_delay_ms": {"type": "number", "minimum": 0},
            },
        },
    },
}

_validator = Draft7Validator(CONFIG_SCHEMA)


@dataclass(frozen=True)
class McpServerConfig:
    command: str
    args: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CacheConfig:
    namespace: str = "slack-manager"
    default_ttl_sec: float = TTL.FIVE_MINUTES
    enabled: bool = True


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 6
    base_delay_ms: float = 500
    max_delay_ms: float = 16000


@dataclass(frozen=True)
class SlackConfig:
    mcp_server: McpServerConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    request_timeout_sec: float = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlackConfig":
        validate_config(data)
        server = data["mcp_server"]
        cache_data = data.get("cache", {})
        retry_data = data.get("retry", {})
        return cls(
            mcp_server=McpServerConfig(
                command=server["command"],
                args=tuple(server.get("args", [])),
                env=dict(server.get("env", {})),
            ),
            cache=CacheConfig(
                namespace=cache_data.get("namespace", "slack-manager"),
                default_ttl_sec=float(cache_data.get("default_ttl_sec", TTL.FIVE_MINUTES)),
                enabled=bool(cache_data.get("enabled", True)),
            ),
            retry=RetryConfig(
                max_retries=int(retry_data.get("max_retries", 6)),
                base_delay_ms=float(retry_data.get("base_delay_ms", 500)),
                max_delay_ms=float(retry_data.get("max_delay_ms", 16000)),
            ),
            request_timeout_sec=float(data.get("request_timeout_sec", 30.0)),
        )

    def token(self) -> str:
        """User token when configured, bot token otherwise."""
        token = self.mcp_server.env.get("SLACK_MCP_XOXP_TOKEN") or self.mcp_server.env.get("SLACK_MCP_XOXB_TOKEN")
        if not token:
            raise ConfigurationError("No Slack token configured")
        return token

    def bot_token(self) -> str:
        token = self.mcp_server.env.get("SLACK_MCP_XOXB_TOKEN")
        if not token:
            raise ConfigurationError("No Slack bot token (xoxb) configured")
        return token


ENV_MAP = {
    "mcp_server.command": "SLACK_MCP_COMMAND",
    "mcp_server.env.SLACK_MCP_XOXP_TOKEN": "SLACK_MCP_XOXP_TOKEN",
    "mcp_server.env.SLACK_MCP_XOXB_TOKEN": "SLACK_MCP_XOXB_TOKEN",
    "cache.namespace": "SLACK_CACHE_NAMESPACE",
    "cache.default_ttl_sec": "SLACK_CACHE_TTL_SEC",
    "cache.enabled": "SLACK_CACHE_ENABLED",
    "request_timeout_sec": "SLACK_REQUEST_TIMEOUT_SEC",
    "retry.max_retries": "SLACK_MCP_MAX_RETRIES",
}


def validate_config(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ConfigurationError(f"config validation failed: {messages}")


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        try:
            return yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Config file is not valid YAML: {path}: {exc}") from exc


def _coerce(last: str, value: str, env_name: str) -> Any:
    try:
        if last in {"default_ttl_sec", "request_timeout_sec"}:
            return float(value)
        if last == "max_retries":
            return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"invalid value for {env_name}: {value!r}") from exc
    if last == "enabled":
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return value


def merge_env_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    merged = json.loads(json.dumps(config_data))  # deep copy via json

    for dotted_key, env_name in ENV_MAP.items():
        if env_name not in os.environ:
            continue
        target = merged
        parts = dotted_key.split(".")
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        last = parts[-1]
        target[last] = _coerce(last, os.environ[env_name], env_name)

    return merged


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> SlackConfig:
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    data = load_yaml(path)
    data = merge_env_overrides(data)
    return SlackConfig.from_dict(data)
