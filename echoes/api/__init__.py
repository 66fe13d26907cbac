"""
Inbound HTTP API (aiohttp)
"""

from .server import create_app, run_server
from .ratelimit import FixedWindowRateLimiter

__all__ = ['create_app', 'run_server', 'FixedWindowRateLimiter']
