"""
Lyric embedding resolution memoized per track
"""

from typing import List, Optional, Protocol

from ..utils.cache import TTLCache
from ..utils.exceptions import InvalidInput


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class EmbeddingResolver:
    """
    Resolve the lyric embedding of a track

    The cache is shared by every request; concurrent writers for the same
    track store the same vector, so the last write wins harmlessly.
    """

    def __init__(self, provider: EmbeddingProvider, cache: Optional[TTLCache] = None):
        self.provider = provider
        self.cache = cache if cache is not None else TTLCache()

    def cached(self, track_id: str) -> Optional[List[float]]:
        return self.cache.get(track_id)

    async def resolve(self, track_id: str, text: str) -> List[float]:
        """
        Return the embedding for ``text``, calling the provider on a cache miss

        Raises:
            InvalidInput: Text is empty or whitespace only
            EmbeddingProviderError: The provider call failed
        """
        cached = self.cache.get(track_id)
        if cached is not None:
            return cached

        if not text or not text.strip():
            raise InvalidInput("Cannot embed empty lyrics", details={'track_id': track_id})

        vector = await self.provider.embed(text.strip())
        self.cache.put(track_id, vector)
        return vector
