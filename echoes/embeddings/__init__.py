"""
Lyric embeddings (OpenAI) and per-track memoization
"""

from .provider import OpenAIEmbeddingProvider
from .resolver import EmbeddingResolver

__all__ = ['OpenAIEmbeddingProvider', 'EmbeddingResolver']
