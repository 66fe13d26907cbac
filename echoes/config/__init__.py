"""
Configuration and credential management

- settings: YAML/env backed application settings
- auth: Spotify credential lifecycle and token storage
"""

from .settings import Settings, get_settings, reload_settings
from .auth import Credential, CredentialManager, TokenStore

__all__ = [
    'Settings',
    'get_settings',
    'reload_settings',
    'Credential',
    'CredentialManager',
    'TokenStore',
]
