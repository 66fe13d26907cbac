"""
Lyrics lookup (Genius) and cached resolution
"""

from .genius import GeniusLyricsProvider
from .resolver import LyricsResolver

__all__ = ['GeniusLyricsProvider', 'LyricsResolver']
