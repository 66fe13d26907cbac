"""
Main CLI interface for Echoes

Command-line entry point for running the HTTP API and for using the
recommendation engine directly from a terminal.

The CLI is built using Click framework and provides:
- serve: run the aiohttp API consumed by the web UI
- search / recommend / analyze: query the engine with the stored session
- playlist: publish a selection to Spotify
- auth: import, inspect, refresh and remove the stored Spotify token
- config: show and validate configuration
"""

import asyncio
import functools
import json
import sys
from pathlib import Path

import click

from . import __version__
from .api.server import run_server
from .config.auth import Credential, CredentialManager, TokenStore
from .config.settings import get_settings, reload_settings
from .embeddings.provider import OpenAIEmbeddingProvider
from .embeddings.resolver import EmbeddingResolver
from .lyrics.genius import GeniusLyricsProvider
from .lyrics.resolver import LyricsResolver
from .recommend.engine import RecommendationEngine
from .recommend.scoring import WeightSet
from .spotify.candidates import CandidateAcquirer
from .spotify.client import SpotifyCatalog
from .spotify.publisher import PlaylistPublisher
from .utils.cache import TTLCache
from .utils.exceptions import EchoesError, Unauthorized
from .utils.helpers import now_ms
from .utils.logger import configure_from_settings, get_current_log_file, get_logger


logger = get_logger(__name__)


def print_banner():
    """Print application banner to console"""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║                            Echoes                             ║
║                                                               ║
║        Emotion-level song discovery for Spotify tracks        ║
║                                                               ║
╚═══════════════════════════════════════════════════════════════╝
    """
    click.echo(click.style(banner, fg='green', bold=True))


def handle_error(func):
    """
    Decorator to handle common CLI errors gracefully

    Echoes errors are shown with their kind; anything else is logged with a
    traceback to the log file.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo(click.style("\n\nOperation cancelled by user", fg='yellow'))
            sys.exit(130)
        except EchoesError as e:
            logger.error(f"Command failed ({e.kind}): {e}")
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            if e.details:
                click.echo(f"   Details: {json.dumps(e.details, default=str)}", err=True)
            sys.exit(1)
        except Exception as e:
            logger.exception(f"Command failed: {e}")
            click.echo(click.style(f"Error: {e}", fg='red'), err=True)
            sys.exit(1)
    return wrapper


def _token_store() -> TokenStore:
    return TokenStore(get_settings().get_token_storage_path())


def _credentials() -> CredentialManager:
    settings = get_settings()
    store = _token_store()
    credential = store.load()
    if credential is None:
        raise Unauthorized("No stored Spotify token. Run 'echoes auth import TOKEN_FILE' first")
    return CredentialManager(
        credential,
        client_id=settings.spotify.client_id,
        client_secret=settings.spotify.client_secret,
        token_url=settings.spotify.token_url,
        store=store,
        timeout=settings.spotify.timeout,
    )


def _catalog() -> SpotifyCatalog:
    settings = get_settings()
    return SpotifyCatalog(_credentials(), timeout=settings.spotify.timeout, market=settings.spotify.market)


def _engine() -> RecommendationEngine:
    settings = get_settings()
    catalog = _catalog()
    lyrics_provider = GeniusLyricsProvider(
        api_key=settings.lyrics.genius_api_key if settings.lyrics.enabled else "",
        timeout=settings.lyrics.timeout,
        retries=settings.lyrics.retries,
        per_page=settings.lyrics.max_search_results,
        fetch_full_text=settings.lyrics.fetch_full_text,
    )
    embedding_provider = OpenAIEmbeddingProvider(
        api_key=settings.embeddings.api_key,
        model=settings.embeddings.model,
        timeout=settings.embeddings.timeout,
    )
    rec = settings.recommendation
    return RecommendationEngine(
        catalog,
        LyricsResolver(lyrics_provider, TTLCache(settings.lyrics.cache_ttl)),
        EmbeddingResolver(embedding_provider, TTLCache(settings.embeddings.cache_ttl)),
        acquirer=CandidateAcquirer(catalog, pool_size=settings.spotify.candidate_pool_size),
        min_results=rec.min_results,
        default_weights=WeightSet(rec.lyrics_weight, rec.audio_weight, rec.spotify_weight),
    )


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', type=click.Path(), help='Path to config file')
@click.pass_context
def cli(ctx, version, verbose, config):
    """
    Echoes - find songs that feel like the one you love

    Ranks Spotify recommendations by lyric meaning and audio character.
    """
    ctx.ensure_object(dict)

    if version:
        click.echo(f"Echoes v{__version__}")
        return

    settings = reload_settings(config) if config else get_settings()
    if verbose:
        settings.logging.level = "DEBUG"
        ctx.obj['verbose'] = True
    configure_from_settings(settings)

    if ctx.invoked_subcommand is None:
        print_banner()
        click.echo(ctx.get_help())


@cli.command()
@click.option('--host', help='Bind address')
@click.option('--port', type=int, help='Bind port')
@handle_error
def serve(host, port):
    """Run the HTTP API"""
    run_server(get_settings(), host=host, port=port)


@cli.command()
@click.argument('query')
@click.option('--limit', type=click.IntRange(1, 50), default=10, show_default=True)
@handle_error
def search(query, limit):
    """Search the Spotify catalog"""
    tracks = asyncio.run(_engine().search(query, limit=limit))
    if not tracks:
        click.echo("No tracks found")
        return
    for track in tracks:
        click.echo(f"{track.id}  {track.all_artists} - {track.title}  [{track.album_name}]")


@cli.command()
@click.argument('track_id')
@click.option('--lyrics', 'lyrics_weight', type=float, help='Lyrics signal weight')
@click.option('--audio', 'audio_weight', type=float, help='Audio fingerprint signal weight')
@click.option('--spotify', 'spotify_weight', type=float, help='Spotify audio-feature signal weight')
@click.option('--limit', type=click.IntRange(min=1), help='Number of results')
@click.option('--timeout', type=float, help='Abort after this many seconds')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@handle_error
def recommend(track_id, lyrics_weight, audio_weight, spotify_weight, limit, timeout, as_json):
    """Recommend tracks similar to TRACK_ID"""
    settings = get_settings()
    overrides = {
        name: value
        for name, value in (('lyrics', lyrics_weight), ('audio', audio_weight), ('spotify', spotify_weight))
        if value is not None
    }

    result = asyncio.run(_engine().recommend(
        track_id,
        weights=overrides or None,
        limit=limit or settings.recommendation.default_limit,
        timeout=timeout or settings.recommendation.request_timeout,
    ))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"Similar to: {result.source.all_artists} - {result.source.title}")
    click.echo(f"Method: {result.method}")
    if result.degraded:
        click.echo(click.style(f"Degraded: {', '.join(result.degraded)}", fg='yellow'))
    if result.message:
        click.echo(result.message)

    for position, candidate in enumerate(result.recommendations, 1):
        b = candidate.breakdown
        click.echo(
            f"{position:>3}. {candidate.score:.3f}  {candidate.track.all_artists} - {candidate.track.title}"
            f"  (lyrics {b.lyrics:.3f}, spotify {b.spotify:.3f}, audio {b.audio:.3f})  {candidate.track.id}"
        )


@cli.command()
@click.argument('track_id')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@handle_error
def analyze(track_id, as_json):
    """Feature-conditioned recommendations for TRACK_ID"""
    result = asyncio.run(_engine().analyze(track_id))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"Analysis of: {result.source.all_artists} - {result.source.title}")
    click.echo(f"Method: {result.method}")
    if result.note:
        click.echo(click.style(result.note, fg='yellow'))
    if result.audio_features:
        features = ", ".join(f"{k} {v}" for k, v in result.audio_features.items())
        click.echo(f"Audio features: {features}")
    click.echo(f"Lyrics found: {'yes' if result.lyrics_fetched else 'no'}")
    for track in result.tracks:
        click.echo(f"   • {track.all_artists} - {track.title}  {track.id}")


@cli.command()
@click.argument('track_id')
@click.argument('similar_ids', nargs=-1, required=True)
@click.option('--name', help='Playlist name')
@handle_error
def playlist(track_id, similar_ids, name):
    """Create a private playlist from TRACK_ID and SIMILAR_IDS"""
    published = asyncio.run(PlaylistPublisher(_catalog()).publish(track_id, list(similar_ids), name=name))
    click.echo(f"Created playlist with {published.track_count} tracks: {published.playlist_url}")


@cli.group()
def auth():
    """Stored Spotify token management"""
    pass


@auth.command(name='import')
@click.argument('token_file', type=click.Path(exists=True, dir_okay=False))
@handle_error
def import_token(token_file):
    """
    Store a Spotify token from a JSON file

    The file needs access_token, refresh_token and either expires_at (epoch
    milliseconds) or expires_in (seconds).
    """
    with open(token_file, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if 'access_token' not in data:
        raise click.BadParameter("access_token missing", param_hint='TOKEN_FILE')

    expires_at = data.get('expires_at') or now_ms() + int(data.get('expires_in', 3600)) * 1000
    credential = Credential(
        access_token=data['access_token'],
        refresh_token=data.get('refresh_token') or "",
        expires_at_ms=int(expires_at),
    )
    store = _token_store()
    store.save(credential)
    click.echo(f"Token stored in {store.token_file}")


@auth.command()
@handle_error
def status():
    """Check authentication status"""
    credential = _token_store().load()
    if credential is None:
        click.echo("Authentication Status: Not authenticated")
        click.echo("   Run 'echoes auth import TOKEN_FILE' to authenticate")
        return

    remaining_s = (credential.expires_at_ms - now_ms()) // 1000
    click.echo("Authentication Status: Token stored")
    if remaining_s > 0:
        click.echo(f"   Access token expires in {remaining_s // 60} min")
    else:
        click.echo("   Access token expired (will refresh on next use)")
    click.echo(f"   Refresh token: {'present' if credential.refresh_token else 'missing'}")


@auth.command()
@handle_error
def refresh():
    """Refresh the stored access token now"""
    credential = asyncio.run(_credentials().refresh())
    click.echo(f"Token refreshed, valid for {(credential.expires_at_ms - now_ms()) // 60000} min")


@auth.command()
@handle_error
def logout():
    """Remove stored authentication"""
    if _token_store().clear():
        click.echo("Successfully logged out")
    else:
        click.echo("No stored token")


@cli.group()
def config():
    """Configuration management"""
    pass


@config.command()
@handle_error
def show():
    """Display current configuration"""
    settings = get_settings()

    click.echo("Current Configuration:")
    click.echo(f"   Market: {settings.spotify.market}")
    click.echo(f"   Candidate pool: {settings.spotify.candidate_pool_size}")
    click.echo(f"   Spotify client: {'configured' if settings.spotify.client_id else 'missing'}")
    click.echo(f"   Lyrics: {'enabled' if settings.lyrics.enabled else 'disabled'}"
               f" (full text: {settings.lyrics.fetch_full_text})")
    click.echo(f"   Embedding model: {settings.embeddings.model}")
    rec = settings.recommendation
    click.echo(f"   Weights: lyrics {rec.lyrics_weight}, audio {rec.audio_weight}, spotify {rec.spotify_weight}")
    click.echo(f"   Results: default {rec.default_limit}, minimum {rec.min_results}")
    click.echo(f"   Server: {settings.server.host}:{settings.server.port}"
               f" ({settings.server.rate_limit_requests} req / {settings.server.rate_limit_window}s)")
    click.echo(f"   Token file: {settings.get_token_storage_path()}")
    log_file = get_current_log_file()
    click.echo(f"   Log file: {log_file if log_file else 'console only'}")


@config.command()
@handle_error
def validate():
    """Check configuration for problems"""
    problems = get_settings().validate()
    if not problems:
        click.echo("Configuration OK")
        return

    click.echo(f"Found {len(problems)} issues:")
    for problem in problems:
        click.echo(f"   • {problem}")
    sys.exit(1)


@config.command()
@click.option('--path', type=click.Path(dir_okay=False), help='Target file')
@handle_error
def save(path):
    """Write current configuration (without secrets) to YAML"""
    target = get_settings().save_config(path)
    click.echo(f"Configuration saved to {Path(target)}")


if __name__ == '__main__':
    cli()
