"""Per-operation call log schema enforcement."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

CALL_LOG_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": [
        "operation",
        "transport",
        "cache_hit",
        "ok",
        "latency_ms",
        "logged_at",
    ],
    "properties": {
        "operation": {"type": "string", "minLength": 1},
        "transport": {"type": "string", "enum": ["mcp", "http", "cache"]},
        "cache_hit": {"type": "boolean"},
        "ok": {"type": "boolean"},
        "latency_ms": {"type": "number", "minimum": 0},
        "error": {"type": ["string", "null"]},
        "invalidated": {"type": "integer", "minimum": 0},
        "logged_at": {"type": "string", "format": "date-time"},
    },
}

_validator = Draft7Validator(CALL_LOG_SCHEMA)


def validate_call_log(payload: Dict[str, Any]) -> None:
    errors = sorted(_validator.iter_errors(payload), key=lambda e: list(e.path))
    if errors:
        messages = ", ".join(error.message for error in errors)
        raise ValueError(f"call log validation failed: {messages}")


@dataclass
class CallLogRecord:
    operation: str
    transport: str
    cache_hit: bool
    ok: bool
    latency_ms: float
    error: Optional[str] = None
    invalidated: int = 0
    logged_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "operation": self.operation,
            "transport": self.transport,
            "cache_hit": self.cache_hit,
            "ok": self.ok,
            "latency_ms": self.latency_ms,
            "error": self.error,
            "invalidated": self.invalidated,
            "logged_at": self.logged_at,
        }
        validate_call_log(payload)
        return payload
