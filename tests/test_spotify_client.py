"""Test the spotipy-backed catalog client and playlist publishing"""

from unittest.mock import MagicMock, patch

import pytest
from spotipy.exceptions import SpotifyException

from echoes.config.auth import Credential, CredentialManager
from echoes.spotify.client import SpotifyCatalog
from echoes.spotify.publisher import (
    DEFAULT_DESCRIPTION,
    DEFAULT_PLAYLIST_NAME,
    PlaylistPublisher,
)
from echoes.utils.exceptions import InvalidInput, UpstreamError

from conftest import FakeCatalog, FakeClock


def catalog_with(spotify_mock):
    clock = FakeClock()
    credentials = CredentialManager(
        Credential('access', 'refresh', clock() + 3_600_000), 'client', 'secret', clock=clock
    )
    with patch('echoes.spotify.client.spotipy.Spotify', return_value=spotify_mock) as factory:
        catalog = SpotifyCatalog(credentials, market="SE")
        catalog._client_for('access')
    return catalog, factory


class TestSpotifyCatalog:
    """Test spotipy call mapping"""

    @pytest.mark.asyncio
    async def test_track(self, sample_track_data):
        spotify = MagicMock()
        spotify.track.return_value = sample_track_data
        catalog, factory = catalog_with(spotify)

        track = await catalog.track('test_track_123')

        assert track.title == 'Test Song'
        spotify.track.assert_called_once_with('test_track_123')
        factory.assert_called_once_with(auth='access', requests_timeout=15)

    @pytest.mark.asyncio
    async def test_spotify_exception_mapped(self):
        spotify = MagicMock()
        spotify.track.side_effect = SpotifyException(404, -1, "non existing id")
        catalog, _ = catalog_with(spotify)

        with pytest.raises(UpstreamError) as exc_info:
            await catalog.track('missing')

        assert exc_info.value.status == 404
        assert exc_info.value.provider == "spotify"
        assert "non existing id" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_empty_audio_features_is_404(self):
        spotify = MagicMock()
        spotify.audio_features.return_value = [None]
        catalog, _ = catalog_with(spotify)

        with pytest.raises(UpstreamError) as exc_info:
            await catalog.audio_features('t1')

        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_recommendations_parameters(self, sample_track_data):
        spotify = MagicMock()
        spotify.recommendations.return_value = {'tracks': [sample_track_data, None]}
        catalog, _ = catalog_with(spotify)

        tracks = await catalog.recommendations(['seed'], limit=50, targets={'energy': 0.4})

        assert [t.id for t in tracks] == ['test_track_123']
        spotify.recommendations.assert_called_once_with(
            seed_tracks=['seed'], seed_artists=None, limit=50, country="SE", target_energy=0.4
        )

    @pytest.mark.asyncio
    async def test_search_tracks(self, sample_track_data):
        spotify = MagicMock()
        spotify.search.return_value = {'tracks': {'items': [sample_track_data]}}
        catalog, _ = catalog_with(spotify)

        tracks = await catalog.search_tracks("test song", limit=5)

        assert len(tracks) == 1
        spotify.search.assert_called_once_with(q="test song", limit=5, type='track', market="SE")


class TestPlaylistPublisher:
    """Test playlist creation"""

    @pytest.mark.asyncio
    async def test_publish_private_playlist(self):
        catalog = FakeCatalog()

        result = await PlaylistPublisher(catalog).publish("seed", ["a", "b"])

        assert catalog.created == [{
            'user_id': 'user_1',
            'name': DEFAULT_PLAYLIST_NAME,
            'description': DEFAULT_DESCRIPTION,
            'public': False,
        }]
        assert catalog.added == [["spotify:track:seed", "spotify:track:a", "spotify:track:b"]]
        assert result.to_dict() == {
            'playlistId': 'playlist_1',
            'playlistUrl': 'https://open.spotify.com/playlist/playlist_1',
            'trackCount': 3,
            'success': True,
        }

    @pytest.mark.asyncio
    async def test_ids_trimmed_before_dedupe(self):
        catalog = FakeCatalog()

        result = await PlaylistPublisher(catalog).publish(" seed ", [" a", "a ", "seed"])

        assert catalog.added == [["spotify:track:seed", "spotify:track:a"]]
        assert result.track_count == 2

    @pytest.mark.asyncio
    async def test_batches_of_100_without_duplicates(self):
        catalog = FakeCatalog()
        similar = [f"t{i}" for i in range(150)] + ["t3", "seed"]

        result = await PlaylistPublisher(catalog).publish("seed", similar, name="Late night")

        assert [len(batch) for batch in catalog.added] == [100, 51]
        uris = [uri for batch in catalog.added for uri in batch]
        assert len(uris) == len(set(uris))
        assert result.track_count == 151
        assert catalog.created[0]['name'] == "Late night"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("track_id, similar", [
        ("", ["a"]),
        ("seed", "a,b"),
        ("seed", ["a", ""]),
    ])
    async def test_invalid_input(self, track_id, similar):
        with pytest.raises(InvalidInput):
            await PlaylistPublisher(FakeCatalog()).publish(track_id, similar)
