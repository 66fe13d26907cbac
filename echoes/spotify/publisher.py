"""
Playlist publishing for Echoes

Turns a seed track and a user-selected set of recommendations into a private
Spotify playlist owned by the signed-in user.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from ..utils.exceptions import InvalidInput
from ..utils.helpers import chunked, unique
from ..utils.logger import get_logger
from .client import SpotifyCatalog


logger = get_logger(__name__)

DEFAULT_PLAYLIST_NAME = "Echoes Playlist"
DEFAULT_DESCRIPTION = "Created with Echoes - Emotion-level song discovery"

# Spotify accepts at most 100 items per add-tracks request
MAX_TRACKS_PER_REQUEST = 100


@dataclass(frozen=True)
class PublishedPlaylist:
    playlist_id: str
    playlist_url: str
    track_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'playlistId': self.playlist_id,
            'playlistUrl': self.playlist_url,
            'trackCount': self.track_count,
            'success': True,
        }


class PlaylistPublisher:
    """Creates and fills playlists through the session catalog client"""

    def __init__(self, catalog: SpotifyCatalog):
        self.catalog = catalog

    async def publish(
        self,
        track_id: str,
        similar_ids: Sequence[str],
        name: Optional[str] = None,
        description: str = DEFAULT_DESCRIPTION,
    ) -> PublishedPlaylist:
        """
        Create a playlist holding the seed followed by the selection

        Args:
            track_id: Seed track id (first playlist entry)
            similar_ids: Selected recommendation ids in display order
            name: Playlist name, defaults to "Echoes Playlist"
            description: Playlist description

        Raises:
            InvalidInput: Missing seed or malformed selection
            UpstreamError: Spotify rejected one of the calls
        """
        if not isinstance(track_id, str) or not track_id.strip():
            raise InvalidInput("trackId is required")

        if not isinstance(similar_ids, (list, tuple)) or not all(
            isinstance(i, str) and i.strip() for i in similar_ids
        ):
            raise InvalidInput("similarTrackIds must be an array of track ids")

        user = await self.catalog.current_user()
        user_id = user.get('id') if user else None
        if not user_id:
            raise InvalidInput("Could not determine the current Spotify user")

        playlist = await self.catalog.create_playlist(
            user_id, (name or "").strip() or DEFAULT_PLAYLIST_NAME, description, public=False
        )
        playlist_id = playlist['id']

        selection = [track_id.strip(), *(i.strip() for i in similar_ids)]
        uris: List[str] = [f"spotify:track:{tid}" for tid in unique(selection)]
        for batch in chunked(uris, MAX_TRACKS_PER_REQUEST):
            await self.catalog.add_tracks(playlist_id, batch)

        url = (playlist.get('external_urls') or {}).get('spotify') or f"https://open.spotify.com/playlist/{playlist_id}"
        logger.info(f"Created playlist {playlist_id} with {len(uris)} tracks for user {user_id}")
        return PublishedPlaylist(playlist_id=playlist_id, playlist_url=url, track_count=len(uris))
