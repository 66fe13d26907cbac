"""
Spotify integration package

- models: immutable Track built from Web API payloads
- client: async spotipy facade with single refresh-and-retry
- candidates: fallback ladder for recommendation candidates
- publisher: playlist creation from a selection
"""

from .models import Track
from .client import RefreshRetryPolicy, SpotifyCatalog
from .candidates import AcquisitionRequest, CandidateAcquirer, CandidatePool
from .publisher import PlaylistPublisher

__all__ = [
    'Track',
    'RefreshRetryPolicy',
    'SpotifyCatalog',
    'AcquisitionRequest',
    'CandidateAcquirer',
    'CandidatePool',
    'PlaylistPublisher',
]
