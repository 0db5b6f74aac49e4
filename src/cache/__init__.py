"""
Slack Manager Cache Layer
In-memory TTL cache with canonical keys and pattern invalidation
"""

from .cache import TTL, CacheStats, TTLCache
from .key_generator import (
    CacheKey,
    build_cache_key,
    create_cache_key,
    match_key,
    match_regex,
)

__all__ = [
    'TTL', 'CacheStats', 'TTLCache',
    'CacheKey', 'build_cache_key', 'create_cache_key',
    'match_key', 'match_regex',
]
