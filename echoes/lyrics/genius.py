"""
Genius lyrics provider for Echoes

Looks a song up on Genius by ``"<title> <artist>"`` and takes the first hit.
The Genius API itself only returns hit metadata (title, artist, page URL);
with ``fetch_full_text`` enabled the lyric page is downloaded through
lyricsgenius, otherwise the lookup ends at the hit and reports not-found.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

import lyricsgenius
import requests

from ..utils.exceptions import UpstreamError
from ..utils.logger import get_logger


@dataclass(frozen=True)
class GeniusHit:
    song_id: int
    title: str
    artist: str
    url: str

    @classmethod
    def from_result(cls, result: Dict[str, Any]) -> 'GeniusHit':
        primary_artist = result.get('primary_artist') or {}
        return cls(
            song_id=result.get('id', 0),
            title=result.get('title', ''),
            artist=primary_artist.get('name', ''),
            url=result.get('url', ''),
        )


class GeniusLyricsProvider:
    """
    Genius search and lyric page retrieval

    Args:
        api_key: Genius client access token
        timeout: Request timeout in seconds
        retries: lyricsgenius retry count for failed requests
        per_page: Number of search hits requested
        fetch_full_text: Download the lyric page for the first hit
    """

    def __init__(
        self,
        api_key: str,
        timeout: int = 15,
        retries: int = 2,
        per_page: int = 5,
        fetch_full_text: bool = True,
    ):
        self.logger = get_logger(__name__)
        self.api_key = api_key
        self.timeout = timeout
        self.retries = retries
        self.per_page = per_page
        self.fetch_full_text = fetch_full_text
        self._genius_client: Optional[lyricsgenius.Genius] = None
        self._warned_unavailable = False

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    @property
    def genius_client(self) -> lyricsgenius.Genius:
        """Authenticated Genius client, created on first use"""
        if not self._genius_client:
            self._genius_client = lyricsgenius.Genius(
                access_token=self.api_key,
                timeout=self.timeout,
                retries=self.retries,
                remove_section_headers=False,  # Cleaned by the resolver
                skip_non_songs=True,
                verbose=False
            )
        return self._genius_client

    def search_first_hit(self, title: str, artist: str) -> Optional[GeniusHit]:
        query = f"{title} {artist}".strip()
        try:
            response = self.genius_client.search_songs(query, per_page=self.per_page)
        except requests.RequestException as e:
            raise _genius_error("Genius search failed", e) from e

        hits = (response or {}).get('hits') or []
        if not hits:
            return None
        return GeniusHit.from_result(hits[0].get('result') or {})

    def find_lyrics(self, title: str, artist: str) -> Optional[str]:
        """
        Search Genius and return raw lyric text for the first hit

        Returns:
            Raw (uncleaned) lyric text, or None when nothing was found

        Raises:
            UpstreamError: Genius answered with an error
        """
        if not self.available:
            if not self._warned_unavailable:
                self.logger.warning("Genius API key not configured, lyrics unavailable")
                self._warned_unavailable = True
            return None

        hit = self.search_first_hit(title, artist)
        if hit is None:
            self.logger.debug(f"No Genius hits for '{title}' by '{artist}'")
            return None

        self.logger.debug(f"Genius hit for '{title}': {hit.artist} - {hit.title} ({hit.url})")

        if not self.fetch_full_text or not hit.url:
            return None

        try:
            lyrics = self.genius_client.lyrics(song_url=hit.url)
        except requests.RequestException as e:
            raise _genius_error("Genius lyrics page request failed", e) from e

        return lyrics or None

    async def find_lyrics_async(self, title: str, artist: str) -> Optional[str]:
        return await asyncio.to_thread(self.find_lyrics, title, artist)


def _genius_error(message: str, error: requests.RequestException) -> UpstreamError:
    response = getattr(error, 'response', None)
    return UpstreamError(
        f"{message}: {error}",
        status=response.status_code if response is not None else None,
        body=response.text if response is not None else str(error),
        provider="genius",
    )
