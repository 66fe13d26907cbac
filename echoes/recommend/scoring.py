"""
Similarity scoring for Echoes

Three signals are combined into one score:

- ``lyrics``: cosine similarity of lyric embeddings
- ``spotify``: cosine similarity of Spotify audio-feature vectors
- ``audio``: audio-fingerprint similarity, reserved and always 0 for now

Each signal's contribution is ``similarity * weight`` with weights normalized
to sum to 1. The per-signal contributions are returned as the breakdown.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from ..spotify.models import Track
from ..utils.exceptions import DimensionMismatch, InvalidInput


SIGNALS = ('lyrics', 'audio', 'spotify')


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors

    Returns 0.0 when either vector has zero norm.

    Raises:
        DimensionMismatch: The vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(
            f"Cannot compare vectors of length {len(a)} and {len(b)}",
            details={'left': len(a), 'right': len(b)}
        )

    vec1 = np.asarray(a, dtype=float)
    vec2 = np.asarray(b, dtype=float)
    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return float(np.dot(vec1, vec2) / (norm1 * norm2))


@dataclass(frozen=True)
class WeightSet:
    """Relative importance of each signal; never mutated in place"""
    lyrics: float = 0.5
    audio: float = 0.35
    spotify: float = 0.15

    def __post_init__(self):
        for name in SIGNALS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not np.isfinite(value):
                raise InvalidInput(f"Weight '{name}' must be a number", details={'weight': name})
            if value < 0:
                raise InvalidInput(f"Weight '{name}' must be non-negative", details={'weight': name, 'value': value})

    @property
    def total(self) -> float:
        return self.lyrics + self.audio + self.spotify

    def normalized(self) -> 'WeightSet':
        """
        Scale weights to sum to 1

        An all-zero set is returned unchanged; every candidate then scores 0.
        """
        total = self.total
        if total <= 0:
            return WeightSet(0.0, 0.0, 0.0)
        return WeightSet(
            lyrics=self.lyrics / total,
            audio=self.audio / total,
            spotify=self.spotify / total,
        )

    def without(self, signal: str) -> 'WeightSet':
        """Copy with one signal's weight set to 0 (not renormalized)"""
        values = self.to_dict()
        values[signal] = 0.0
        return WeightSet(**values)

    @classmethod
    def from_overrides(cls, overrides: Optional[Mapping[str, Any]], defaults: Optional['WeightSet'] = None) -> 'WeightSet':
        """
        Apply caller overrides on top of defaults

        Unknown keys are rejected so typos do not silently fall back to defaults.
        """
        base = (defaults or cls()).to_dict()
        if not overrides:
            return cls(**base)

        if not isinstance(overrides, Mapping):
            raise InvalidInput("weights must be an object")

        unknown = set(overrides) - set(SIGNALS)
        if unknown:
            raise InvalidInput(f"Unknown weight keys: {', '.join(sorted(unknown))}")

        base.update(overrides)
        return cls(**base)

    def to_dict(self) -> Dict[str, float]:
        return {'lyrics': self.lyrics, 'audio': self.audio, 'spotify': self.spotify}


def weighted_score(lyrics_sim: float, spotify_sim: float, audio_sim: float, weights: WeightSet) -> float:
    return lyrics_sim * weights.lyrics + spotify_sim * weights.spotify + audio_sim * weights.audio


@dataclass(frozen=True)
class ScoreBreakdown:
    lyrics: float = 0.0
    spotify: float = 0.0
    audio: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {'lyrics': self.lyrics, 'spotify': self.spotify, 'audio': self.audio}


@dataclass(frozen=True)
class ScoredCandidate:
    track: Track
    score: float
    breakdown: ScoreBreakdown

    def to_dict(self) -> Dict[str, Any]:
        return {**self.track.to_dict(), 'score': self.score, 'breakdown': self.breakdown.to_dict()}


def score_candidate(
    track: Track,
    weights: WeightSet,
    lyrics_sim: float = 0.0,
    spotify_sim: float = 0.0,
    audio_sim: float = 0.0,
) -> ScoredCandidate:
    """Combine per-signal similarities into a scored candidate"""
    breakdown = ScoreBreakdown(
        lyrics=lyrics_sim * weights.lyrics,
        spotify=spotify_sim * weights.spotify,
        audio=audio_sim * weights.audio,
    )
    return ScoredCandidate(
        track=track,
        score=weighted_score(lyrics_sim, spotify_sim, audio_sim, weights),
        breakdown=breakdown,
    )


def rank(candidates: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    """Sort by score descending; equal scores keep their input order"""
    return sorted(candidates, key=lambda c: c.score, reverse=True)
