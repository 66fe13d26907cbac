"""
Configuration management for Echoes

This module handles loading, validation, and management of application settings
from YAML files and environment variables.

The configuration is organized into logical sections using dataclasses:
- Spotify catalog settings (credentials, market, candidate pool, throttling)
- Lyrics provider settings (Genius token, full-text fetching, cache lifetime)
- Embedding provider settings (OpenAI key, model, cache lifetime)
- Recommendation defaults (signal weights, result limits, timeout)
- HTTP server settings (bind address, inbound rate limit)
- Logging and security (log file, token storage location)

Secrets (client secret, API keys) should come from environment variables or a
``.env`` file, while everything else can live in ``~/.echoes/config.yaml``.
"""

import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from ..utils.logger import get_logger


# Load environment variables from .env file if present
load_dotenv()

logger = get_logger(__name__)


@dataclass
class SpotifyConfig:
    """
    Spotify Web API settings

    ``client_id`` and ``client_secret`` are required to refresh user tokens
    (HTTP Basic auth against the token endpoint).
    """
    client_id: str = ""
    client_secret: str = ""
    token_url: str = "https://accounts.spotify.com/api/token"
    timeout: int = 15
    market: str = "US"
    candidate_pool_size: int = 50
    requests_per_second: int = 10


@dataclass
class LyricsConfig:
    """Genius lyrics lookup settings"""
    enabled: bool = True
    genius_api_key: str = ""
    fetch_full_text: bool = True
    timeout: int = 15
    retries: int = 2
    max_search_results: int = 5
    cache_ttl: int = 86400


@dataclass
class EmbeddingConfig:
    """OpenAI embedding settings"""
    api_key: str = ""
    model: str = "text-embedding-3-large"
    timeout: int = 30
    cache_ttl: int = 86400


@dataclass
class RecommendationConfig:
    """
    Recommendation defaults

    Weights are relative; they are normalized to sum to 1 per request.
    ``min_results`` is the floor applied to the caller's limit when enough
    candidates are available.
    """
    lyrics_weight: float = 0.5
    audio_weight: float = 0.35
    spotify_weight: float = 0.15
    default_limit: int = 20
    min_results: int = 30
    request_timeout: float = 60.0


@dataclass
class ServerConfig:
    """HTTP API bind address and inbound rate limit"""
    host: str = "127.0.0.1"
    port: int = 8080
    rate_limit_requests: int = 60
    rate_limit_window: int = 60
    # Honour X-Forwarded-For only when a trusted reverse proxy sets it
    trust_forwarded: bool = False
    # Sessions idle for longer than this are forgotten
    session_ttl: int = 86400


@dataclass
class LoggingConfig:
    """Logging output settings"""
    level: str = "INFO"
    file: str = "echoes.log"
    max_size: str = "10MB"
    backup_count: int = 3
    console_output: bool = True
    colored_output: bool = True


@dataclass
class SecurityConfig:
    """Locations of local state"""
    config_directory: str = "~/.echoes"
    token_storage_path: str = "~/.echoes/spotify_token.json"


class Settings:
    """
    Main settings class that manages all configuration

    Sections are populated from defaults, then the first YAML file found,
    then environment variables.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize settings from config file and environment variables

        Args:
            config_path: Path to custom config file, if None uses default locations
        """
        self.config_path = config_path
        self.config_dir = Path.home() / ".echoes"

        self.spotify = SpotifyConfig()
        self.lyrics = LyricsConfig()
        self.embeddings = EmbeddingConfig()
        self.recommendation = RecommendationConfig()
        self.server = ServerConfig()
        self.logging = LoggingConfig()
        self.security = SecurityConfig()

        self._load_config()
        self._load_environment_variables()

    def _sections(self) -> Dict[str, Any]:
        return {
            'spotify': self.spotify,
            'lyrics': self.lyrics,
            'embeddings': self.embeddings,
            'recommendation': self.recommendation,
            'server': self.server,
            'logging': self.logging,
            'security': self.security,
        }

    def _load_config(self) -> None:
        """
        Load configuration from YAML file

        Searches candidate locations in order of precedence; the first file
        found wins.
        """
        config_paths = [
            self.config_path,
            self.config_dir / "config.yaml",
            Path("config/config.yaml"),
            Path("config.yaml")
        ]

        config_data = {}
        for path in config_paths:
            if path and Path(path).exists():
                try:
                    with open(path, 'r', encoding='utf-8') as f:
                        config_data = yaml.safe_load(f) or {}
                    logger.debug(f"Loaded configuration from {path}")
                    break
                except (OSError, yaml.YAMLError) as e:
                    logger.warning(f"Failed to load config from {path}: {e}")

        self._apply_config(config_data)

    def _apply_config(self, config_data: Dict[str, Any]) -> None:
        """
        Apply configuration data to dataclass instances

        Only keys that exist on the target dataclass are applied; unknown
        sections and keys are ignored.

        Args:
            config_data: Dictionary containing configuration sections
        """
        sections = self._sections()
        for section_name, section_data in config_data.items():
            if section_name in sections and isinstance(section_data, dict):
                config_obj = sections[section_name]
                for key, value in section_data.items():
                    if hasattr(config_obj, key):
                        setattr(config_obj, key, value)

    def _load_environment_variables(self) -> None:
        """Load sensitive configuration from environment variables"""
        env_mappings = {
            'SPOTIFY_CLIENT_ID': lambda v: setattr(self.spotify, 'client_id', v),
            'SPOTIFY_CLIENT_SECRET': lambda v: setattr(self.spotify, 'client_secret', v),
            'GENIUS_API_KEY': lambda v: setattr(self.lyrics, 'genius_api_key', v),
            'GENIUS_ACCESS_TOKEN': lambda v: setattr(self.lyrics, 'genius_api_key', v),
            'OPENAI_API_KEY': lambda v: setattr(self.embeddings, 'api_key', v),
            'ECHOES_HOST': lambda v: setattr(self.server, 'host', v),
            'ECHOES_PORT': lambda v: setattr(self.server, 'port', int(v)),
        }

        for env_var, setter in env_mappings.items():
            value = os.getenv(env_var)
            if value:
                setter(value)

    def get_config_directory(self) -> Path:
        """Get the expanded config directory path"""
        return Path(self.security.config_directory).expanduser()

    def get_token_storage_path(self) -> Path:
        """Get the expanded token storage path"""
        return Path(self.security.token_storage_path).expanduser()

    def save_config(self, path: Optional[str] = None) -> Path:
        """
        Save current configuration to file

        Secrets are blanked before writing.

        Args:
            path: Custom path to save config, defaults to user config directory

        Returns:
            Path the configuration was written to
        """
        target = Path(path) if path else self.get_config_directory() / "config.yaml"

        config_data = {name: asdict(section) for name, section in self._sections().items()}
        config_data['spotify']['client_id'] = ""
        config_data['spotify']['client_secret'] = ""
        config_data['lyrics']['genius_api_key'] = ""
        config_data['embeddings']['api_key'] = ""

        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f, default_flow_style=False, indent=2)
        return target

    def validate(self) -> List[str]:
        """
        Validate current configuration

        Returns:
            List of human-readable problems, empty when the configuration is usable
        """
        errors = []

        if not self.spotify.client_id or not self.spotify.client_secret:
            errors.append("Spotify client_id and client_secret are required")

        if self.lyrics.enabled and not self.lyrics.genius_api_key:
            errors.append("Genius API key missing: lyrics signal will be unavailable")

        if not self.embeddings.api_key:
            errors.append("OpenAI API key missing: lyric embeddings will be unavailable")

        weights = (
            self.recommendation.lyrics_weight,
            self.recommendation.audio_weight,
            self.recommendation.spotify_weight,
        )
        if any(w < 0 for w in weights):
            errors.append(f"Recommendation weights must be non-negative: {weights}")

        if not 0 < int(self.server.port) < 65536:
            errors.append(f"Invalid server port: {self.server.port}")

        if self.spotify.candidate_pool_size < 1 or self.spotify.candidate_pool_size > 100:
            errors.append(f"Candidate pool size must be between 1 and 100: {self.spotify.candidate_pool_size}")

        return errors

    def __str__(self) -> str:
        sections = [
            f"Market: {self.spotify.market}",
            f"Lyrics: {'enabled' if self.lyrics.enabled else 'disabled'}",
            f"Embedding model: {self.embeddings.model}",
            f"Server: {self.server.host}:{self.server.port}",
        ]
        return f"Settings({', '.join(sections)})"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings instance

    Built on first access so importing the package has no side effects.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings(config_path: Optional[str] = None) -> Settings:
    """
    Reload settings from configuration files

    Args:
        config_path: Optional path to specific config file

    Returns:
        New Settings instance with reloaded configuration
    """
    global _settings
    _settings = Settings(config_path)
    return _settings
