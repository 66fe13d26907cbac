"""
Lyrics resolution with cleaning and caching
"""

from typing import Optional, Protocol

from ..utils.cache import TTLCache
from ..utils.helpers import clean_lyrics_text
from ..utils.logger import get_logger


logger = get_logger(__name__)


class LyricsProvider(Protocol):
    async def find_lyrics_async(self, title: str, artist: str) -> Optional[str]:
        ...


class LyricsResolver:
    """
    Resolve cleaned lyric text for a track

    Args:
        provider: Lyrics source (Genius in production)
        cache: Cache for cleaned text keyed by track id or ``title|artist``
    """

    def __init__(self, provider: LyricsProvider, cache: Optional[TTLCache] = None):
        self.provider = provider
        self.cache = cache if cache is not None else TTLCache()

    @staticmethod
    def cache_key(track_id: Optional[str], title: str, artist: str) -> str:
        return track_id or f"{title}|{artist}"

    async def resolve(self, track_id: Optional[str], title: str, artist: str) -> Optional[str]:
        """
        Return cleaned lyric text, or None when the provider has none

        Misses are not cached, so a later request can still find lyrics.

        Raises:
            UpstreamError: The provider failed
        """
        key = self.cache_key(track_id, title, artist)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        raw = await self.provider.find_lyrics_async(title, artist)
        if not raw:
            return None

        cleaned = clean_lyrics_text(raw)
        if not cleaned:
            return None

        self.cache.put(key, cleaned)
        logger.debug(f"Cached lyrics for {key} ({len(cleaned)} chars)")
        return cleaned
