"""
Spotify data models for Echoes

Immutable track metadata built from Spotify Web API payloads. A ``Track`` is
created per request from a track, search or recommendation response and is
never mutated afterwards.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Track:
    """
    Catalog track used as seed or candidate

    Attributes:
        id: Spotify track identifier
        title: Track title as published
        artist_names: Contributing artists in credit order
        artist_ids: Spotify ids aligned with ``artist_names``
        album_name: Album the track belongs to
        album_art_url: Largest album artwork URL (may be None)
        preview_url: 30-second audio preview URL (may be None)
        external_url: Link to the track on open.spotify.com
    """
    id: str
    title: str
    artist_names: Tuple[str, ...] = field(default_factory=tuple)
    artist_ids: Tuple[str, ...] = field(default_factory=tuple)
    album_name: str = ""
    album_art_url: Optional[str] = None
    preview_url: Optional[str] = None
    external_url: str = ""

    @classmethod
    def from_spotify_data(cls, data: Dict[str, Any]) -> 'Track':
        """
        Build a Track from a Spotify track object

        Accepts both bare track objects and playlist items where the track is
        nested under ``track``.
        """
        track_data = data.get('track') or data
        artists = track_data.get('artists') or []
        album = track_data.get('album') or {}
        images = album.get('images') or []

        return cls(
            id=track_data['id'],
            title=track_data.get('name', ''),
            artist_names=tuple(a.get('name', '') for a in artists),
            artist_ids=tuple(a.get('id') or '' for a in artists),
            album_name=album.get('name', ''),
            album_art_url=images[0].get('url') if images else None,
            preview_url=track_data.get('preview_url'),
            external_url=(track_data.get('external_urls') or {}).get('spotify', ''),
        )

    @property
    def primary_artist(self) -> str:
        return self.artist_names[0] if self.artist_names else "Unknown Artist"

    @property
    def primary_artist_id(self) -> Optional[str]:
        """First credited artist id, used as recommendation seed"""
        if self.artist_ids and self.artist_ids[0]:
            return self.artist_ids[0]
        return None

    @property
    def all_artists(self) -> str:
        return ", ".join(self.artist_names)

    @property
    def uri(self) -> str:
        return f"spotify:track:{self.id}"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize in the shape the HTTP API returns"""
        return {
            'id': self.id,
            'title': self.title,
            'artist': self.all_artists,
            'album': self.album_name,
            'albumArt': self.album_art_url,
            'previewUrl': self.preview_url,
            'spotifyUrl': self.external_url,
        }
