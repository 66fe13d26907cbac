"""
Shared utilities: logging, exceptions, caching and text helpers
"""

from .cache import CacheEntry, TTLCache
from .helpers import chunked, clean_lyrics_text, now_ms, unique
from .logger import configure_from_settings, get_logger

__all__ = [
    'CacheEntry',
    'TTLCache',
    'chunked',
    'clean_lyrics_text',
    'now_ms',
    'unique',
    'configure_from_settings',
    'get_logger',
]
