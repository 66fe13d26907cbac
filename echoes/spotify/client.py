"""
Spotify Web API client for Echoes

Asynchronous facade over spotipy. Every call:

1. obtains a valid bearer token from the session's ``CredentialManager``
2. waits for a slot on the shared outbound ``Throttler``
3. runs the blocking spotipy call in a worker thread
4. maps spotipy/requests failures to ``UpstreamError`` with status and body

Calls rejected with 401/403 are retried exactly once after a token refresh
by ``RefreshRetryPolicy``; a second rejection is surfaced unchanged.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

import requests
import spotipy
from asyncio_throttle import Throttler
from spotipy.exceptions import SpotifyException

from ..config.auth import CredentialManager
from ..utils.exceptions import RefreshFailed, UpstreamError
from ..utils.logger import get_logger
from .models import Track


T = TypeVar("T")

logger = get_logger(__name__)

# spotipy logs every HTTP error itself; errors are reported here instead
logging.getLogger('spotipy').setLevel(logging.ERROR)


class RefreshRetryPolicy:
    """
    At most one refresh-and-retry per call

    Args:
        credentials: Session credential manager
        retry_statuses: Upstream statuses that trigger the refresh
    """

    def __init__(self, credentials: CredentialManager, retry_statuses: Sequence[int] = (401, 403)):
        self.credentials = credentials
        self.retry_statuses = tuple(retry_statuses)

    async def run(self, call: Callable[[str], Awaitable[T]]) -> T:
        """
        Execute ``call(token)`` with a single reactive refresh

        Raises:
            Unauthorized: No valid token could be obtained up front
            UpstreamError: The call failed, or failed again after the refresh
        """
        token = await self.credentials.get_valid_token()

        try:
            return await call(token)
        except UpstreamError as e:
            if e.status not in self.retry_statuses:
                raise
            first_error = e

        logger.debug(f"Spotify rejected token with HTTP {first_error.status}, refreshing once")
        try:
            fresh_token = await self.credentials.force_refresh(token)
        except RefreshFailed as refresh_error:
            logger.warning(f"Reactive token refresh failed: {refresh_error}")
            raise first_error from refresh_error

        return await call(fresh_token)


class SpotifyCatalog:
    """
    Catalog operations used by the recommendation engine and publisher

    Args:
        credentials: Session credential manager
        timeout: spotipy request timeout in seconds
        market: Market filter applied to recommendations and search
        throttler: Outbound rate limiter shared across sessions
    """

    def __init__(
        self,
        credentials: CredentialManager,
        timeout: float = 15,
        market: str = "US",
        throttler: Optional[Throttler] = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self.market = market
        self.throttler = throttler or Throttler(rate_limit=10, period=1.0)
        self.retry_policy = RefreshRetryPolicy(credentials)
        self._client: Optional[spotipy.Spotify] = None
        self._client_token: Optional[str] = None

    def _client_for(self, token: str) -> spotipy.Spotify:
        if self._client is None or self._client_token != token:
            self._client = spotipy.Spotify(auth=token, requests_timeout=self.timeout)
            self._client_token = token
        return self._client

    async def _call(self, method_name: str, *args, **kwargs) -> Any:
        async def attempt(token: str) -> Any:
            func = getattr(self._client_for(token), method_name)
            async with self.throttler:
                try:
                    return await asyncio.to_thread(func, *args, **kwargs)
                except SpotifyException as e:
                    raise UpstreamError(
                        f"Spotify {method_name} failed with HTTP {e.http_status}",
                        status=e.http_status,
                        body=e.msg,
                        provider="spotify",
                    ) from e
                except requests.RequestException as e:
                    raise UpstreamError(
                        f"Spotify {method_name} request failed: {e}",
                        provider="spotify",
                    ) from e

        return await self.retry_policy.run(attempt)

    async def track(self, track_id: str) -> Track:
        data = await self._call('track', track_id)
        return Track.from_spotify_data(data)

    async def audio_features(self, track_id: str) -> Dict[str, Any]:
        """
        Fetch the raw audio-feature payload for one track

        Raises:
            UpstreamError: 403 when the endpoint is restricted for this app,
                404 when Spotify has no features for the track
        """
        payload = await self._call('audio_features', [track_id])
        features = payload[0] if payload else None
        if not features:
            raise UpstreamError(
                f"No audio features available for track {track_id}",
                status=404,
                body=None,
                provider="spotify",
            )
        return features

    async def recommendations(
        self,
        seed_tracks: Sequence[str],
        seed_artists: Optional[Sequence[str]] = None,
        limit: int = 50,
        targets: Optional[Dict[str, float]] = None,
    ) -> List[Track]:
        """
        Request recommendations for the given seeds

        Args:
            seed_tracks: Seed track ids
            seed_artists: Seed artist ids (omitted from the request when empty)
            limit: Pool size (Spotify accepts up to 100)
            targets: Tunable attributes, e.g. ``{'danceability': 0.6}``
        """
        kwargs = {f"target_{name}": value for name, value in (targets or {}).items()}
        data = await self._call(
            'recommendations',
            seed_tracks=list(seed_tracks),
            seed_artists=list(seed_artists) if seed_artists else None,
            limit=limit,
            country=self.market,
            **kwargs
        )
        return _tracks_from(data.get('tracks') if data else None)

    async def search_tracks(self, query: str, limit: int = 10) -> List[Track]:
        data = await self._call('search', q=query, limit=limit, type='track', market=self.market)
        items = ((data or {}).get('tracks') or {}).get('items')
        return _tracks_from(items)

    async def current_user(self) -> Dict[str, Any]:
        return await self._call('current_user')

    async def create_playlist(self, user_id: str, name: str, description: str, public: bool = False) -> Dict[str, Any]:
        return await self._call(
            'user_playlist_create', user_id, name, public=public, description=description
        )

    async def add_tracks(self, playlist_id: str, uris: List[str]) -> Dict[str, Any]:
        return await self._call('playlist_add_items', playlist_id, uris)


def _tracks_from(items: Optional[Iterable[Optional[Dict[str, Any]]]]) -> List[Track]:
    """Build tracks, skipping null entries and unavailable items without an id"""
    tracks = []
    for item in items or []:
        if item and (item.get('track') or item).get('id'):
            tracks.append(Track.from_spotify_data(item))
    return tracks
