"""Test configuration and fixtures"""

import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from echoes.config.settings import Settings
from echoes.spotify.models import Track
from echoes.utils.exceptions import InvalidInput, UpstreamError


def make_track(track_id: str, title: Optional[str] = None, artists=("Test Artist",), artist_ids=None) -> Track:
    """Build a Track without going through a Spotify payload"""
    return Track(
        id=track_id,
        title=title or f"Song {track_id}",
        artist_names=tuple(artists),
        artist_ids=tuple(artist_ids) if artist_ids is not None else tuple(f"artist_{i}" for i, _ in enumerate(artists)),
        album_name="Test Album",
        external_url=f"https://open.spotify.com/track/{track_id}",
    )


def feature_payload(*values: float, tempo: float = 120.0) -> Dict[str, Any]:
    """Spotify-shaped audio feature payload from seven values in normalizer order"""
    names = ('danceability', 'energy', 'valence', 'acousticness', 'instrumentalness', 'speechiness', 'liveness')
    payload = dict(zip(names, values))
    payload['tempo'] = tempo
    return payload


class FakeClock:
    """Controllable epoch-ms clock"""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeCredentials:
    refresh_rejected = False

    def is_authenticated(self) -> bool:
        return True


class FakeCatalog:
    """
    In-memory stand-in for SpotifyCatalog

    ``recommendation_handler`` receives (seed_tracks, seed_artists, targets)
    and returns tracks or raises UpstreamError.
    """

    def __init__(self, tracks: Optional[List[Track]] = None):
        self.credentials = FakeCredentials()
        self.tracks = {t.id: t for t in tracks or []}
        self.features: Dict[str, Any] = {}
        self.recommendation_handler = lambda seed_tracks, seed_artists, targets: []
        self.search_results: List[Track] = []
        self.recommendation_calls: List[Dict[str, Any]] = []
        self.feature_calls: List[str] = []
        self.added: List[List[str]] = []
        self.created: List[Dict[str, Any]] = []
        self.user = {'id': 'user_1'}

    async def track(self, track_id: str) -> Track:
        if track_id not in self.tracks:
            raise UpstreamError(f"Track {track_id} not found", status=404, body="not found")
        return self.tracks[track_id]

    async def audio_features(self, track_id: str) -> Dict[str, Any]:
        self.feature_calls.append(track_id)
        value = self.features.get(track_id)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise UpstreamError("No audio features", status=404)
        return value

    async def recommendations(self, seed_tracks, seed_artists=None, limit=50, targets=None) -> List[Track]:
        self.recommendation_calls.append({
            'seed_tracks': list(seed_tracks),
            'seed_artists': list(seed_artists) if seed_artists else None,
            'limit': limit,
            'targets': targets,
        })
        return self.recommendation_handler(seed_tracks, seed_artists, targets)

    async def search_tracks(self, query: str, limit: int = 10) -> List[Track]:
        return self.search_results[:limit]

    async def current_user(self) -> Dict[str, Any]:
        return self.user

    async def create_playlist(self, user_id, name, description, public=False) -> Dict[str, Any]:
        self.created.append({'user_id': user_id, 'name': name, 'description': description, 'public': public})
        return {'id': 'playlist_1', 'external_urls': {'spotify': 'https://open.spotify.com/playlist/playlist_1'}}

    async def add_tracks(self, playlist_id, uris) -> Dict[str, Any]:
        self.added.append(list(uris))
        return {'snapshot_id': 'snap'}


class FakeLyricsProvider:
    def __init__(self, lyrics: Optional[Dict[str, str]] = None):
        self.lyrics = lyrics or {}
        self.calls: List[tuple] = []
        self.errors: Dict[str, Exception] = {}

    async def find_lyrics_async(self, title: str, artist: str) -> Optional[str]:
        self.calls.append((title, artist))
        if title in self.errors:
            raise self.errors[title]
        return self.lyrics.get(title)


class FakeEmbeddingProvider:
    model = "fake-embedding"

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None):
        self.vectors = vectors or {}
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        if not isinstance(text, str) or not text.strip():
            raise InvalidInput("Text is required for embedding")
        self.calls.append(text)
        if text not in self.vectors:
            raise UpstreamError("no vector", status=500, provider="openai")
        return self.vectors[text]


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(temp_dir, monkeypatch):
    """Settings isolated from the user's config and environment"""
    for var in ('SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET', 'GENIUS_API_KEY',
                'GENIUS_ACCESS_TOKEN', 'OPENAI_API_KEY', 'ECHOES_HOST', 'ECHOES_PORT'):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(temp_dir)
    monkeypatch.setattr(Path, 'home', lambda: temp_dir)

    settings = Settings()
    settings.spotify.client_id = "client"
    settings.spotify.client_secret = "secret"
    settings.security.config_directory = str(temp_dir)
    settings.security.token_storage_path = str(temp_dir / "token.json")
    return settings


@pytest.fixture
def sample_track_data():
    """Sample Spotify track payload"""
    return {
        'id': 'test_track_123',
        'name': 'Test Song',
        'artists': [
            {'id': 'artist_123', 'name': 'Test Artist'},
            {'id': 'artist_456', 'name': 'Featured Artist'},
        ],
        'album': {
            'id': 'album_123',
            'name': 'Test Album',
            'images': [
                {'url': 'https://i.scdn.co/image/large', 'height': 640},
                {'url': 'https://i.scdn.co/image/small', 'height': 64},
            ],
        },
        'preview_url': 'https://p.scdn.co/mp3-preview/abc',
        'external_urls': {'spotify': 'https://open.spotify.com/track/test_track_123'},
        'duration_ms': 210000,
    }
