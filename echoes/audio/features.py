"""
Audio feature normalization

Spotify feature payloads are reduced to a fixed-order tuple. The order below
is shared with the scorer; vectors built any other way are not comparable.
"""

from typing import Any, Mapping, Tuple

from ..utils.exceptions import InvalidInput


FEATURE_ORDER: Tuple[str, ...] = (
    'danceability',
    'energy',
    'valence',
    'acousticness',
    'instrumentalness',
    'speechiness',
    'liveness',
)

AudioFeatureVector = Tuple[float, ...]


def normalize_features(features: Mapping[str, Any]) -> AudioFeatureVector:
    """
    Select the seven perceptual features in fixed order

    Values are used as provided (Spotify already reports them in [0, 1]).

    Raises:
        InvalidInput: A feature is missing or not numeric
    """
    vector = []
    for name in FEATURE_ORDER:
        value = features.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidInput(f"Audio feature '{name}' missing or not numeric", details={'feature': name})
        vector.append(float(value))
    return tuple(vector)
