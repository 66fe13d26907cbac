"""
Audio feature handling
"""

from .features import FEATURE_ORDER, normalize_features

__all__ = ['FEATURE_ORDER', 'normalize_features']
