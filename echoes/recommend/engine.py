"""
Recommendation orchestrator for Echoes

Given a seed track id and signal weights, produces a ranked list of similar
tracks with a per-signal score breakdown:

1. obtain the seed's metadata (hard failure propagates)
2. resolve the seed's lyric embedding and audio features (soft: a missing
   signal contributes 0 and is reported in ``degraded``)
3. acquire candidates through the fallback ladder (hard failure raises
   ``RecommendationFailed``)
4. drop the seed, deduplicate, then score every candidate concurrently
5. stable sort by score and truncate

A failure while scoring one candidate only zeroes that candidate's affected
signal. ``DimensionMismatch`` is a defect and is never absorbed.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar

from ..audio.features import AudioFeatureVector, FEATURE_ORDER, normalize_features
from ..embeddings.resolver import EmbeddingResolver
from ..lyrics.resolver import LyricsResolver
from ..spotify.candidates import (
    AcquisitionRequest,
    CandidateAcquirer,
    DEGRADED_NO_AUDIO_FEATURES,
)
from ..spotify.client import SpotifyCatalog
from ..spotify.models import Track
from ..utils.exceptions import (
    CandidateFetchFailed,
    Cancelled,
    InvalidInput,
    RecommendationFailed,
    UpstreamError,
)
from ..utils.logger import get_logger
from .dedupe import dedupe
from .scoring import ScoredCandidate, WeightSet, cosine, rank, score_candidate


T = TypeVar("T")

logger = get_logger(__name__)

DEGRADED_NO_LYRICS = "no_lyrics"
METHOD_NO_CANDIDATES = "no_candidates"
METHOD_FALLBACK_OR_EMPTY = "fallback_or_empty"
NO_RECOMMENDATIONS_MESSAGE = "No recommendations available for this track"


@dataclass
class RecommendationResult:
    source: Track
    recommendations: List[ScoredCandidate]
    weights: WeightSet
    effective_weights: WeightSet
    method: str
    degraded: Tuple[str, ...] = ()
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'sourceTrackId': self.source.id,
            'sourceTrack': self.source.to_dict(),
            'recommendations': [c.to_dict() for c in self.recommendations],
            'weights': self.weights.to_dict(),
            'effectiveWeights': self.effective_weights.to_dict(),
            'method': self.method,
            'degraded': list(self.degraded),
        }
        if self.message:
            data['error'] = self.message
        return data


@dataclass
class AnalysisResult:
    source: Track
    tracks: List[Track]
    audio_features: Optional[Dict[str, Any]]
    lyrics_fetched: bool
    method: str
    note: Optional[str] = None
    degraded: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        analysis = {
            'audioFeatures': self.audio_features,
            'lyricsFetched': self.lyrics_fetched,
            'method': self.method,
            'degraded': list(self.degraded),
        }
        if self.note:
            analysis['note'] = self.note
        return {
            'sourceTrack': self.source.to_dict(),
            'results': [t.to_dict() for t in self.tracks],
            'analysis': analysis,
        }


class RecommendationEngine:
    """
    End-to-end recommendation for one session

    Args:
        catalog: Session catalog client
        lyrics_resolver: Shared lyrics resolver
        embedding_resolver: Shared embedding resolver
        acquirer: Candidate acquirer (built from ``catalog`` when omitted)
        min_results: Floor applied to the caller's limit
        default_weights: Weights used for keys the caller does not override
    """

    def __init__(
        self,
        catalog: SpotifyCatalog,
        lyrics_resolver: LyricsResolver,
        embedding_resolver: EmbeddingResolver,
        acquirer: Optional[CandidateAcquirer] = None,
        min_results: int = 30,
        default_weights: Optional[WeightSet] = None,
    ):
        self.catalog = catalog
        self.lyrics = lyrics_resolver
        self.embeddings = embedding_resolver
        self.acquirer = acquirer or CandidateAcquirer(catalog)
        self.min_results = min_results
        self.default_weights = default_weights or WeightSet()

    async def recommend(
        self,
        track_id: str,
        weights: Optional[Mapping[str, Any]] = None,
        limit: int = 20,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RecommendationResult:
        """
        Rank candidates similar to ``track_id``

        Args:
            track_id: Seed track id
            weights: Optional overrides for ``lyrics``, ``audio``, ``spotify``
            limit: Requested number of results (raised to ``min_results``
                when more candidates are available)
            timeout: Seconds before the whole call is abandoned
            cancel_event: Set by the caller to abandon the call

        Raises:
            InvalidInput: Bad track id, limit or weights
            Unauthorized: Session has no usable credential
            UpstreamError: Seed track lookup failed
            RecommendationFailed: No candidates could be acquired
            Cancelled: Timeout elapsed or cancel_event was set
        """
        if not isinstance(track_id, str) or not track_id.strip():
            raise InvalidInput("trackId is required")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidInput(f"limit must be a positive integer, got {limit!r}")

        requested = WeightSet.from_overrides(weights, self.default_weights).normalized()
        return await _run_cancellable(
            self._recommend(track_id.strip(), requested, limit), timeout, cancel_event
        )

    async def _recommend(self, track_id: str, requested: WeightSet, limit: int) -> RecommendationResult:
        source = await self.catalog.track(track_id)
        logger.info(f"Recommending for {source.primary_artist} - {source.title} ({source.id})")

        effective = requested
        degraded: List[str] = []

        source_embedding, (source_features, features_blocked) = await asyncio.gather(
            self._source_embedding(source) if requested.lyrics > 0 else _resolved(None),
            self._source_features(source) if requested.spotify > 0 else _resolved((None, False)),
        )

        if requested.lyrics > 0 and source_embedding is None:
            effective = effective.without('lyrics')
            degraded.append(DEGRADED_NO_LYRICS)
        if requested.spotify > 0 and source_features is None:
            effective = effective.without('spotify')
            degraded.append(DEGRADED_NO_AUDIO_FEATURES)

        request = AcquisitionRequest(
            track_id=source.id,
            artist_id=source.primary_artist_id,
            features_blocked=features_blocked,
        )
        try:
            pool = await self.acquirer.fetch(request)
        except CandidateFetchFailed as e:
            raise RecommendationFailed(
                e.message, status=e.status, body=e.body, details={'attempts': e.details.get('attempts', [])}
            ) from e

        for tag in pool.degraded:
            if tag not in degraded:
                degraded.append(tag)

        candidates = dedupe(t for t in pool.tracks if t.id != source.id)
        if not candidates:
            logger.info(f"No candidates left for {source.id} after filtering")
            return RecommendationResult(
                source=source,
                recommendations=[],
                weights=requested,
                effective_weights=effective,
                method=METHOD_NO_CANDIDATES,
                degraded=tuple(degraded),
                message=NO_RECOMMENDATIONS_MESSAGE,
            )

        scored = await _gather_or_cancel(
            self._score(candidate, source_embedding, source_features, effective)
            for candidate in candidates
        )

        ranked = rank(scored)[:max(limit, self.min_results)]
        logger.info(f"Ranked {len(scored)} candidates for {source.id}, returning {len(ranked)}")

        return RecommendationResult(
            source=source,
            recommendations=ranked,
            weights=requested,
            effective_weights=effective,
            method=pool.method,
            degraded=tuple(degraded),
        )

    async def _score(
        self,
        candidate: Track,
        source_embedding: Optional[List[float]],
        source_features: Optional[AudioFeatureVector],
        weights: WeightSet,
    ) -> ScoredCandidate:
        want_lyrics = source_embedding is not None and weights.lyrics > 0
        want_features = source_features is not None and weights.spotify > 0

        embedding, features = await asyncio.gather(
            self._track_embedding(candidate) if want_lyrics else _resolved(None),
            self._candidate_features(candidate) if want_features else _resolved(None),
        )

        lyrics_sim = cosine(source_embedding, embedding) if embedding is not None else 0.0
        spotify_sim = cosine(source_features, features) if features is not None else 0.0

        # Audio fingerprint signal has no provider yet
        return score_candidate(candidate, weights, lyrics_sim=lyrics_sim, spotify_sim=spotify_sim, audio_sim=0.0)

    async def _track_embedding(self, track: Track) -> Optional[List[float]]:
        """Lyric embedding for a track, or None when lyrics or embedding are unavailable"""
        cached = self.embeddings.cached(track.id)
        if cached is not None:
            return cached

        try:
            text = await self.lyrics.resolve(track.id, track.title, track.primary_artist)
            if not text:
                return None
            return await self.embeddings.resolve(track.id, text)
        except (UpstreamError, InvalidInput) as e:
            logger.debug(f"Lyrics signal unavailable for {track.id}: {e}")
            return None

    async def _source_embedding(self, source: Track) -> Optional[List[float]]:
        embedding = await self._track_embedding(source)
        if embedding is None:
            logger.info(f"No lyrics for seed {source.id}, lyrics weight dropped to 0")
        return embedding

    async def _source_features(self, source: Track) -> Tuple[Optional[AudioFeatureVector], bool]:
        """Normalized seed features and whether the feature endpoint is blocked"""
        try:
            raw = await self.catalog.audio_features(source.id)
            return normalize_features(raw), False
        except UpstreamError as e:
            blocked = e.status == 403
            logger.info(f"Audio features unavailable for seed {source.id} (HTTP {e.status})")
            return None, blocked
        except InvalidInput as e:
            logger.info(f"Audio features incomplete for seed {source.id}: {e}")
            return None, False

    async def _candidate_features(self, track: Track) -> Optional[AudioFeatureVector]:
        try:
            return normalize_features(await self.catalog.audio_features(track.id))
        except (UpstreamError, InvalidInput) as e:
            logger.debug(f"Audio features unavailable for {track.id}: {e}")
            return None

    async def analyze(self, track_id: str, include_lyrics: bool = True) -> AnalysisResult:
        """
        Feature-conditioned candidate list for a track

        Uses the seed's danceability, energy, valence and tempo as targets. When
        the feature endpoint is blocked the seed-based workaround is used.

        Raises:
            InvalidInput: Missing track id
            Unauthorized: Session has no usable credential
            RecommendationFailed: No candidates could be acquired
        """
        if not isinstance(track_id, str) or not track_id.strip():
            raise InvalidInput("trackId is required")
        track_id = track_id.strip()

        source = await self.catalog.track(track_id)

        raw_features = None
        features_blocked = False
        try:
            raw_features = await self.catalog.audio_features(track_id)
        except UpstreamError as e:
            features_blocked = e.status == 403
            logger.info(f"Audio features unavailable for {track_id} (HTTP {e.status})")

        lyrics_fetched = False
        if include_lyrics:
            try:
                lyrics_fetched = bool(await self.lyrics.resolve(source.id, source.title, source.primary_artist))
            except UpstreamError as e:
                logger.debug(f"Lyrics lookup failed for {track_id}: {e}")

        request = AcquisitionRequest(
            track_id=track_id,
            artist_id=source.primary_artist_id,
            targets=raw_features,
            features_blocked=features_blocked,
        )
        try:
            pool = await self.acquirer.fetch(request)
        except CandidateFetchFailed as e:
            raise RecommendationFailed(e.message, status=e.status, body=e.body) from e

        tracks = dedupe(t for t in pool.tracks if t.id != track_id)
        note = None
        if features_blocked:
            note = "Audio features are not available for this app; results are seeded by track and artist"

        return AnalysisResult(
            source=source,
            tracks=tracks,
            audio_features=_feature_summary(raw_features),
            lyrics_fetched=lyrics_fetched,
            method=pool.method if tracks else METHOD_FALLBACK_OR_EMPTY,
            note=note,
            degraded=pool.degraded,
        )

    async def search(self, query: str, limit: int = 10) -> List[Track]:
        """Catalog search with duplicate releases collapsed"""
        if not isinstance(query, str) or not query.strip():
            raise InvalidInput("Search query is required")
        return dedupe(await self.catalog.search_tracks(query.strip(), limit=limit))


def _feature_summary(raw: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    keys = FEATURE_ORDER + ('tempo',)
    return {key: raw.get(key) for key in keys if key in raw}


async def _resolved(value: T) -> T:
    return value


async def _gather_or_cancel(aws: Iterable[Awaitable[T]]) -> List[T]:
    """
    Gather ``aws`` concurrently; the first failure cancels the rest

    Siblings are awaited after cancellation so none outlives the call.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _run_cancellable(
    work: Awaitable[T],
    timeout: Optional[float],
    cancel_event: Optional[asyncio.Event],
) -> T:
    """
    Await ``work`` unless the timeout elapses or ``cancel_event`` is set

    On abort the work (and every task it fanned out) is cancelled and no
    partial result is returned.

    Raises:
        Cancelled: Timeout or cancellation happened first
    """
    task = asyncio.ensure_future(work)
    if timeout is None and cancel_event is None:
        return await task

    waiters = {task}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    if cancel_event is not None and cancel_event.is_set():
        raise Cancelled("Recommendation cancelled by caller")
    raise Cancelled(f"Recommendation timed out after {timeout}s", details={'timeout': timeout})
