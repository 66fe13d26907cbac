"""
Collapse catalog entries that are the same song

Spotify lists many songs several times (single, album, deluxe edition).
Two tracks are the same song when their lowercased title and joined artist
names match.
"""

from typing import Iterable, List

from ..spotify.models import Track


def dedupe_key(track: Track) -> str:
    return f"{track.title.lower()}|{', '.join(track.artist_names).lower()}"


def dedupe(tracks: Iterable[Track]) -> List[Track]:
    """Keep the first track for each key, in input order"""
    seen = set()
    result = []
    for track in tracks:
        key = dedupe_key(track)
        if key not in seen:
            seen.add(key)
            result.append(track)
    return result
