"""
Candidate acquisition for Echoes

Spotify's recommendation endpoint is inconsistently available: some apps are
denied audio features, and some seed-artist combinations are answered with
404. Candidates are therefore fetched through an ordered list of strategies,
each tried only when the previous one failed:

1. ``FeatureConditioned``: seed track plus target audio attributes. Only used
   when the caller supplied targets and features were not blocked.
2. ``SeedTrackAndArtist``: seed track plus primary artist.
3. ``SeedTrackOnly``: seed track alone. Used after a 404, or when no artist
   seed is known.

When every applicable strategy fails, ``CandidateFetchFailed`` carries the
last upstream status and body.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..utils.exceptions import CandidateFetchFailed, UpstreamError
from ..utils.logger import get_logger
from .client import SpotifyCatalog
from .models import Track


logger = get_logger(__name__)

METHOD_RECOMMENDATIONS = "spotify_recommendations"
METHOD_NO_AUDIO_FEATURES = "recommendations_workaround_no_audio_features"
DEGRADED_NO_AUDIO_FEATURES = "no_audio_features"

# Audio attributes forwarded as target_* parameters
TARGET_ATTRIBUTES = ('danceability', 'energy', 'valence', 'tempo')


@dataclass(frozen=True)
class AcquisitionRequest:
    """
    Inputs shared by every strategy

    Attributes:
        track_id: Seed track id
        artist_id: Primary artist of the seed (None when unknown)
        targets: Raw audio features of the seed for feature-conditioned requests
        features_blocked: Feature endpoint answered 403 for this credential
    """
    track_id: str
    artist_id: Optional[str] = None
    targets: Optional[Dict[str, Any]] = None
    features_blocked: bool = False


@dataclass(frozen=True)
class AcquisitionFailure:
    strategy: str
    status: Optional[int]
    body: Any


@dataclass
class CandidatePool:
    tracks: List[Track]
    strategy: str
    method: str
    degraded: Tuple[str, ...] = ()
    failures: List[AcquisitionFailure] = field(default_factory=list)


class AcquisitionStrategy:
    """One rung of the fallback ladder"""

    name = "strategy"

    def applies(self, request: AcquisitionRequest, prior: Optional[AcquisitionFailure]) -> bool:
        raise NotImplementedError

    async def attempt(self, catalog: SpotifyCatalog, request: AcquisitionRequest, pool_size: int) -> List[Track]:
        raise NotImplementedError


class FeatureConditioned(AcquisitionStrategy):
    name = "feature_conditioned"

    def applies(self, request, prior):
        return prior is None and bool(request.targets) and not request.features_blocked

    async def attempt(self, catalog, request, pool_size):
        targets = {
            key: request.targets[key]
            for key in TARGET_ATTRIBUTES
            if request.targets.get(key) is not None
        }
        return await catalog.recommendations([request.track_id], limit=pool_size, targets=targets)


class SeedTrackAndArtist(AcquisitionStrategy):
    name = "seed_track_and_artist"

    def applies(self, request, prior):
        return request.artist_id is not None

    async def attempt(self, catalog, request, pool_size):
        return await catalog.recommendations(
            [request.track_id], seed_artists=[request.artist_id], limit=pool_size
        )


class SeedTrackOnly(AcquisitionStrategy):
    name = "seed_track_only"

    def applies(self, request, prior):
        # Retry without the artist seed only when the provider rejected it with 404
        if prior is None or request.artist_id is None:
            return True
        return prior.strategy != SeedTrackAndArtist.name or prior.status == 404

    async def attempt(self, catalog, request, pool_size):
        return await catalog.recommendations([request.track_id], limit=pool_size)


DEFAULT_STRATEGIES: Tuple[AcquisitionStrategy, ...] = (
    FeatureConditioned(),
    SeedTrackAndArtist(),
    SeedTrackOnly(),
)


class CandidateAcquirer:
    """
    Runs the fallback ladder against the catalog

    Args:
        catalog: Session catalog client
        pool_size: Number of candidates requested per attempt
        strategies: Ordered strategies (defaults to the standard ladder)
    """

    def __init__(
        self,
        catalog: SpotifyCatalog,
        pool_size: int = 50,
        strategies: Sequence[AcquisitionStrategy] = DEFAULT_STRATEGIES,
    ):
        self.catalog = catalog
        self.pool_size = pool_size
        self.strategies = tuple(strategies)

    async def fetch(self, request: AcquisitionRequest) -> CandidatePool:
        """
        Fetch a candidate pool for the seed track

        Raises:
            CandidateFetchFailed: No applicable strategy succeeded
            Unauthorized: The session has no usable credential
        """
        failures: List[AcquisitionFailure] = []
        prior: Optional[AcquisitionFailure] = None

        for strategy in self.strategies:
            if not strategy.applies(request, prior):
                continue

            try:
                tracks = await strategy.attempt(self.catalog, request, self.pool_size)
            except UpstreamError as e:
                prior = AcquisitionFailure(strategy.name, e.status, e.body)
                failures.append(prior)
                logger.info(f"Candidate strategy {strategy.name} failed for {request.track_id}: HTTP {e.status}")
                continue

            logger.debug(f"Candidate strategy {strategy.name} returned {len(tracks)} tracks")
            return CandidatePool(
                tracks=tracks,
                strategy=strategy.name,
                method=METHOD_NO_AUDIO_FEATURES if request.features_blocked else METHOD_RECOMMENDATIONS,
                degraded=(DEGRADED_NO_AUDIO_FEATURES,) if request.features_blocked else (),
                failures=failures,
            )

        last = failures[-1] if failures else AcquisitionFailure("none", None, None)
        raise CandidateFetchFailed(
            f"Could not fetch recommendations for track {request.track_id}",
            status=last.status,
            body=last.body,
            provider="spotify",
            details={'attempts': [f.strategy for f in failures]},
        )
