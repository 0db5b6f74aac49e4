#!/usr/bin/env python3
"""
Cache Key Generation — Canonical Operation Keys

Implements:
- build_cache_key(tag, params) → deterministic CacheKey
- CacheKey.parse(text) → CacheKey from its canonical text
- match_key(tag, **params) → predicate over stored keys (semantic fields)
- match_regex(pattern) → predicate over stored keys (canonical text)

Key format:
    history:channel=C1,limit=10
    thread:channel=C1,ts="1712.0042"
    - parameter names sorted, so insertion order never matters
    - None values dropped, so an omitted option and an explicit None agree
    - non-string values JSON-encoded
    - strings written as-is unless they would read back as JSON, in which
      case they are JSON-quoted (the string "10" never collides with 10)
    - names and values percent-encoded, so no value can contain a separator
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

KEY_SEPARATOR = ":"
PARAM_SEPARATOR = ","
# Left unescaped in values for readability; none of them is a separator
# inside the parameter list.
VALUE_SAFE_CHARS = '"@:/'


def _reads_as_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def _format_name(name: Any) -> str:
    return quote(str(name), safe="")


def _format_value(value: Any) -> str:
    if isinstance(value, str) and not _reads_as_json(value):
        text = value
    else:
        text = json.dumps(value, sort_keys=True, separators=(",", ":"))
    return quote(text, safe=VALUE_SAFE_CHARS)


def _decode_value(token: str) -> Any:
    text = unquote(token)
    try:
        return json.loads(text)
    except ValueError:
        return text


@dataclass(frozen=True)
class CacheKey:
    """
    Structured cache key: operation tag plus canonical parameters.

    The canonical text (``str(key)``) is what the cache stores entries
    under. The tag and params stay available so invalidation matchers can
    test fields instead of substrings.
    """
    tag: str
    params: Tuple[Tuple[str, str], ...] = field(default=())

    def __str__(self) -> str:
        if not self.params:
            return self.tag
        body = PARAM_SEPARATOR.join(f"{name}={value}" for name, value in self.params)
        return f"{self.tag}{KEY_SEPARATOR}{body}"

    @property
    def text(self) -> str:
        return str(self)

    def param(self, name: str) -> Optional[str]:
        """Return the canonical value of one parameter, or None if absent."""
        target = _format_name(name)
        for key, value in self.params:
            if key == target:
                return value
        return None

    def as_dict(self) -> Dict[str, str]:
        return dict(self.params)

    @classmethod
    def parse(cls, text: str) -> "CacheKey":
        """
        Rebuild a key from its canonical text.

        Text without a ``tag:`` prefix or without ``name=value`` pairs is
        treated as a bare tag, so arbitrary opaque strings still work as keys.
        Each value is decoded and re-encoded, so hand-typed text such as
        ``search:query=a b`` lands on the same entry as the built key. A bare
        ``ts=123`` reads as the number 123; the string needs ``ts="123"``.
        """
        tag, sep, body = text.partition(KEY_SEPARATOR)
        if not sep or not body:
            return cls(tag=text)

        pairs = []
        for chunk in body.split(PARAM_SEPARATOR):
            name, eq, value = chunk.partition("=")
            if not eq or not name:
                return cls(tag=text)
            pairs.append((_format_name(unquote(name)), _format_value(_decode_value(value))))
        return cls(tag=tag, params=tuple(sorted(pairs)))


KeyLike = Union[CacheKey, str]
KeyMatcher = Callable[[CacheKey], bool]


def build_cache_key(tag: str, params: Optional[Mapping[str, Any]] = None) -> CacheKey:
    """
    Generate a deterministic cache key.

    Args:
        tag: Logical operation name (history, thread, channels, ...)
        params: Operation parameters; None values are omitted

    Returns:
        CacheKey whose text is identical for equal parameter sets
    """
    if not tag:
        raise ValueError("cache key tag must be a non-empty string")
    if any(sep in tag for sep in (KEY_SEPARATOR, PARAM_SEPARATOR, "=")):
        raise ValueError(f"cache key tag must not contain ':', ',' or '=': {tag!r}")

    pairs = tuple(sorted(
        (_format_name(name), _format_value(value))
        for name, value in (params or {}).items()
        if value is not None
    ))
    key = CacheKey(tag=tag, params=pairs)
    logger.debug(f"Generated key: {key}")
    return key


create_cache_key = build_cache_key


def coerce_key(key: KeyLike) -> CacheKey:
    if isinstance(key, CacheKey):
        return key
    return CacheKey.parse(key)


def match_key(tag: Optional[str] = None, **params: Any) -> KeyMatcher:
    """
    Build a matcher that compares the key's tag and named parameters.

    ``match_key("history", channel="C1")`` matches every history key for
    channel C1 regardless of limit or any other parameter.
    """
    expected = {name: _format_value(value) for name, value in params.items()}

    def _matches(key: CacheKey) -> bool:
        if tag is not None and key.tag != tag:
            return False
        return all(key.param(name) == value for name, value in expected.items())

    return _matches


def match_regex(pattern: Union[str, "re.Pattern[str]"]) -> KeyMatcher:
    """Build a matcher that searches the key's canonical text."""
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern

    def _matches(key: CacheKey) -> bool:
        return compiled.search(str(key)) is not None

    return _matches
