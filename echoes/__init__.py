"""
Echoes - emotion-level song discovery

Recommends tracks similar to a seed track by combining lyric-meaning
embeddings and Spotify audio features into one weighted ranking, and
publishes selections as Spotify playlists.
"""

__version__ = "0.1.0"
