"""Test the candidate acquisition ladder"""

import pytest

from echoes.spotify.candidates import (
    DEGRADED_NO_AUDIO_FEATURES,
    METHOD_NO_AUDIO_FEATURES,
    METHOD_RECOMMENDATIONS,
    AcquisitionRequest,
    CandidateAcquirer,
)
from echoes.utils.exceptions import CandidateFetchFailed, UpstreamError

from conftest import FakeCatalog, make_track


class TestCandidateAcquirer:
    """Test fallback between strategies"""

    @pytest.mark.asyncio
    async def test_seed_track_and_artist_first(self):
        catalog = FakeCatalog()
        catalog.recommendation_handler = lambda tracks, artists, targets: [make_track("c1")]

        pool = await CandidateAcquirer(catalog).fetch(AcquisitionRequest("seed", artist_id="artist_1"))

        assert [t.id for t in pool.tracks] == ["c1"]
        assert pool.strategy == "seed_track_and_artist"
        assert pool.method == METHOD_RECOMMENDATIONS
        assert pool.degraded == ()
        assert catalog.recommendation_calls[0]['seed_artists'] == ["artist_1"]
        assert catalog.recommendation_calls[0]['limit'] == 50

    @pytest.mark.asyncio
    async def test_artist_404_falls_back_to_track_only(self):
        """404 only when an artist seed is present: the track-only retry wins"""
        catalog = FakeCatalog()

        def handler(tracks, artists, targets):
            if artists:
                raise UpstreamError("not found", status=404, body="no recs")
            return [make_track("c1"), make_track("c2")]

        catalog.recommendation_handler = handler

        pool = await CandidateAcquirer(catalog).fetch(AcquisitionRequest("seed", artist_id="artist_1"))

        assert [t.id for t in pool.tracks] == ["c1", "c2"]
        assert pool.strategy == "seed_track_only"
        assert len(catalog.recommendation_calls) == 2
        assert catalog.recommendation_calls[1]['seed_artists'] is None
        assert pool.failures[0].status == 404

    @pytest.mark.asyncio
    async def test_non_404_artist_failure_not_retried(self):
        catalog = FakeCatalog()

        def handler(tracks, artists, targets):
            raise UpstreamError("server error", status=500, body="oops")

        catalog.recommendation_handler = handler

        with pytest.raises(CandidateFetchFailed) as exc_info:
            await CandidateAcquirer(catalog).fetch(AcquisitionRequest("seed", artist_id="artist_1"))

        assert exc_info.value.status == 500
        assert len(catalog.recommendation_calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_artist_uses_track_only(self):
        catalog = FakeCatalog()
        catalog.recommendation_handler = lambda tracks, artists, targets: [make_track("c1")]

        pool = await CandidateAcquirer(catalog).fetch(AcquisitionRequest("seed"))

        assert pool.strategy == "seed_track_only"
        assert catalog.recommendation_calls[0]['seed_artists'] is None

    @pytest.mark.asyncio
    async def test_feature_conditioned_with_targets(self):
        catalog = FakeCatalog()
        catalog.recommendation_handler = lambda tracks, artists, targets: [make_track("c1")]
        targets = {'danceability': 0.7, 'energy': 0.4, 'valence': 0.2, 'tempo': 98.0, 'liveness': 0.1}

        pool = await CandidateAcquirer(catalog).fetch(
            AcquisitionRequest("seed", artist_id="artist_1", targets=targets)
        )

        assert pool.strategy == "feature_conditioned"
        assert catalog.recommendation_calls[0]['targets'] == {
            'danceability': 0.7, 'energy': 0.4, 'valence': 0.2, 'tempo': 98.0,
        }

    @pytest.mark.asyncio
    async def test_blocked_features_skip_feature_conditioning(self):
        catalog = FakeCatalog()
        catalog.recommendation_handler = lambda tracks, artists, targets: [make_track("c1")]

        pool = await CandidateAcquirer(catalog).fetch(
            AcquisitionRequest("seed", artist_id="artist_1", targets={'energy': 0.5}, features_blocked=True)
        )

        assert pool.strategy == "seed_track_and_artist"
        assert pool.method == METHOD_NO_AUDIO_FEATURES
        assert pool.degraded == (DEGRADED_NO_AUDIO_FEATURES,)
        assert catalog.recommendation_calls[0]['targets'] is None

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self):
        """The last status and body are surfaced"""
        catalog = FakeCatalog()
        statuses = iter([404, 503])

        def handler(tracks, artists, targets):
            status = next(statuses)
            raise UpstreamError("failed", status=status, body=f"body {status}")

        catalog.recommendation_handler = handler

        with pytest.raises(CandidateFetchFailed) as exc_info:
            await CandidateAcquirer(catalog).fetch(AcquisitionRequest("seed", artist_id="artist_1"))

        error = exc_info.value
        assert error.status == 503
        assert error.body == "body 503"
        assert error.details['attempts'] == ["seed_track_and_artist", "seed_track_only"]

    @pytest.mark.asyncio
    async def test_pool_size_forwarded(self):
        catalog = FakeCatalog()

        await CandidateAcquirer(catalog, pool_size=80).fetch(AcquisitionRequest("seed"))

        assert catalog.recommendation_calls[0]['limit'] == 80
