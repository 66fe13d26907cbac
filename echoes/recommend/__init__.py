"""
Scoring, deduplication and the recommendation orchestrator
"""

from .scoring import ScoredCandidate, WeightSet, cosine, weighted_score
from .dedupe import dedupe, dedupe_key
from .engine import RecommendationEngine, RecommendationResult

__all__ = [
    'ScoredCandidate',
    'WeightSet',
    'cosine',
    'weighted_score',
    'dedupe',
    'dedupe_key',
    'RecommendationEngine',
    'RecommendationResult',
]
