"""
HTTP API for Echoes

aiohttp application consumed by the web UI. Routes:

    GET    /health                 liveness probe
    POST   /api/session            register a Spotify credential, returns a session id
    DELETE /api/session            forget the caller's session
    GET    /api/search?q=          catalog search (deduplicated)
    POST   /api/recommend          ranked recommendations with score breakdown
    POST   /api/track/analyze      feature-conditioned candidate list
    POST   /api/track/lyrics       cleaned lyrics for a track
    POST   /api/embed/lyrics       embedding vector for free text
    POST   /api/playlist/create    publish a selection as a private playlist

Callers identify their session with the ``X-Session-Id`` header; without it
the credential from the local token store is used. Every ``/api/`` request
passes a per-client fixed-window rate limiter first. Errors are returned as
``{"error", "kind", "details"}`` with a status derived from the error kind.
"""

import json
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from aiohttp import web
from asyncio_throttle import Throttler

from ..config.auth import Credential, CredentialManager, TokenStore
from ..config.settings import Settings
from ..embeddings.provider import OpenAIEmbeddingProvider
from ..embeddings.resolver import EmbeddingResolver
from ..lyrics.genius import GeniusLyricsProvider
from ..lyrics.resolver import LyricsResolver
from ..recommend.engine import RecommendationEngine
from ..recommend.scoring import WeightSet
from ..spotify.candidates import CandidateAcquirer
from ..spotify.client import SpotifyCatalog
from ..spotify.publisher import PlaylistPublisher
from ..utils.cache import TTLCache
from ..utils.exceptions import (
    Cancelled,
    EchoesError,
    InvalidInput,
    RecommendationFailed,
    RefreshFailed,
    Unauthorized,
    UpstreamError,
)
from ..utils.helpers import now_ms
from ..utils.logger import get_logger
from .ratelimit import FixedWindowRateLimiter


logger = get_logger(__name__)

SESSION_HEADER = "X-Session-Id"
RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."
LYRICS_NOT_FOUND_MESSAGE = "Lyrics not available for this track"

CatalogFactory = Callable[[CredentialManager], SpotifyCatalog]


class SessionRegistry:
    """
    Credential managers and catalog clients per session

    Sessions expire after ``server.session_ttl`` seconds without use, and are
    dropped as soon as Spotify refuses to refresh their token. The default
    session is backed by the local token store so the CLI's imported token is
    usable by the server without a session header.
    """

    def __init__(
        self,
        settings: Settings,
        catalog_factory: CatalogFactory,
        token_store: Optional[TokenStore] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings
        self.catalog_factory = catalog_factory
        self.token_store = token_store
        self._sessions: TTLCache[SpotifyCatalog] = TTLCache(settings.server.session_ttl, clock=clock)
        self._default: Optional[SpotifyCatalog] = None

    def _manager(self, credential: Optional[Credential], store: Optional[TokenStore]) -> CredentialManager:
        return CredentialManager(
            credential,
            client_id=self.settings.spotify.client_id,
            client_secret=self.settings.spotify.client_secret,
            token_url=self.settings.spotify.token_url,
            store=store,
            timeout=self.settings.spotify.timeout,
        )

    def create(self, credential: Credential) -> str:
        purged = self._sessions.purge_expired()
        if purged:
            logger.debug(f"Dropped {purged} idle sessions")

        session_id = secrets.token_urlsafe(24)
        self._sessions.put(session_id, self.catalog_factory(self._manager(credential, None)))
        logger.info(f"Registered session {session_id[:8]}...")
        return session_id

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id) is not None

    def catalog(self, session_id: Optional[str]) -> SpotifyCatalog:
        """
        Catalog client for a session

        Raises:
            Unauthorized: Unknown, idle or revoked session, or no stored
                default credential
        """
        if session_id:
            catalog = self._sessions.get(session_id)
            if catalog is None:
                raise Unauthorized("Unknown or expired session, please sign in again")
            if catalog.credentials.refresh_rejected:
                self._sessions.pop(session_id)
                logger.info(f"Dropped session {session_id[:8]}... after refused token refresh")
                raise Unauthorized("Spotify session expired, please sign in again")
            # Each use restarts the idle window
            self._sessions.put(session_id, catalog)
            return catalog

        default = self._default
        if default is None or not default.credentials.is_authenticated() or default.credentials.refresh_rejected:
            credential = self.token_store.load() if self.token_store else None
            if credential is None:
                raise Unauthorized("Unauthorized")
            self._default = self.catalog_factory(self._manager(credential, self.token_store))
        return self._default

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class Services:
    settings: Settings
    sessions: SessionRegistry
    lyrics_resolver: LyricsResolver
    embedding_resolver: EmbeddingResolver
    embedding_provider: Any
    rate_limiter: FixedWindowRateLimiter

    def engine_for(self, catalog: SpotifyCatalog) -> RecommendationEngine:
        rec = self.settings.recommendation
        return RecommendationEngine(
            catalog,
            self.lyrics_resolver,
            self.embedding_resolver,
            acquirer=CandidateAcquirer(catalog, pool_size=self.settings.spotify.candidate_pool_size),
            min_results=rec.min_results,
            default_weights=WeightSet(rec.lyrics_weight, rec.audio_weight, rec.spotify_weight),
        )


SERVICES = web.AppKey("services", Services)


def status_for(error: EchoesError) -> int:
    """HTTP status for an error kind"""
    if isinstance(error, InvalidInput):
        return 400
    if isinstance(error, (Unauthorized, RefreshFailed)):
        return 401
    if isinstance(error, Cancelled):
        return 504
    if isinstance(error, RecommendationFailed):
        return 502
    if isinstance(error, UpstreamError):
        if error.status and 400 <= error.status < 600:
            return error.status
        return 502
    return 500


def client_key(request: web.Request, trust_forwarded: bool = False) -> str:
    """
    Rate-limit key for a request

    The peer address is used unless the server runs behind a trusted proxy,
    in which case the first X-Forwarded-For entry identifies the client.
    """
    if trust_forwarded:
        forwarded = request.headers.get('X-Forwarded-For', '')
        if forwarded.strip():
            return forwarded.split(',')[0].strip()
    return request.remote or "unknown"


@web.middleware
async def rate_limit_middleware(request: web.Request, handler):
    if request.path.startswith('/api/'):
        services = request.app[SERVICES]
        key = client_key(request, services.settings.server.trust_forwarded)
        decision = services.rate_limiter.check(key)
        if not decision.allowed:
            logger.warning(f"Rate limit exceeded for {key} on {request.path}")
            return web.json_response(
                {'error': RATE_LIMIT_MESSAGE},
                status=429,
                headers={'Retry-After': str(decision.retry_after_s)},
            )
    return await handler(request)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except EchoesError as e:
        status = status_for(e)
        log = logger.error if status >= 500 else logger.info
        log(f"{request.method} {request.path} failed ({e.kind}, HTTP {status}): {e}")
        return web.json_response(e.to_dict(), status=status)
    except Exception:
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return web.json_response({'error': "Internal server error", 'kind': "internal_error", 'details': {}}, status=500)


async def _json_body(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidInput(f"Request body must be valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise InvalidInput("Request body must be a JSON object")
    return body


def _catalog(request: web.Request) -> SpotifyCatalog:
    return request.app[SERVICES].sessions.catalog(request.headers.get(SESSION_HEADER))


async def health(request: web.Request) -> web.Response:
    return web.json_response({'status': "ok"})


async def create_session(request: web.Request) -> web.Response:
    body = await _json_body(request)
    access_token = body.get('accessToken')
    if not isinstance(access_token, str) or not access_token:
        raise InvalidInput("accessToken is required")

    if 'expiresAt' in body:
        expires_at = body['expiresAt']
    else:
        expires_at = now_ms() + int(body.get('expiresIn', 3600)) * 1000
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        raise InvalidInput("expiresAt must be epoch milliseconds")

    credential = Credential(
        access_token=access_token,
        refresh_token=body.get('refreshToken') or "",
        expires_at_ms=int(expires_at),
    )
    session_id = request.app[SERVICES].sessions.create(credential)
    return web.json_response({'sessionId': session_id}, status=201)


async def delete_session(request: web.Request) -> web.Response:
    session_id = request.headers.get(SESSION_HEADER)
    if not session_id or not request.app[SERVICES].sessions.remove(session_id):
        raise Unauthorized("Unknown session")
    return web.json_response({'success': True})


async def search(request: web.Request) -> web.Response:
    query = request.query.get('q', '')
    if not query.strip():
        raise InvalidInput("Query parameter 'q' is required")

    services = request.app[SERVICES]
    tracks = await services.engine_for(_catalog(request)).search(query, limit=10)
    return web.json_response({'results': [t.to_dict() for t in tracks]})


async def recommend(request: web.Request) -> web.Response:
    body = await _json_body(request)
    services = request.app[SERVICES]
    settings = services.settings

    limit = body.get('limit', settings.recommendation.default_limit)
    result = await services.engine_for(_catalog(request)).recommend(
        body.get('trackId'),
        weights=body.get('weights'),
        limit=limit,
        timeout=settings.recommendation.request_timeout,
    )
    return web.json_response(result.to_dict())


async def analyze(request: web.Request) -> web.Response:
    body = await _json_body(request)
    services = request.app[SERVICES]
    result = await services.engine_for(_catalog(request)).analyze(body.get('trackId'))
    return web.json_response(result.to_dict())


async def lyrics(request: web.Request) -> web.Response:
    body = await _json_body(request)
    track_id = body.get('trackId')
    title = body.get('title')
    artist = body.get('artist')
    if not (title and artist):
        raise InvalidInput("title and artist are required")

    resolver = request.app[SERVICES].lyrics_resolver
    cached = LyricsResolver.cache_key(track_id, title, artist) in resolver.cache
    text = await resolver.resolve(track_id, title, artist)
    if not text:
        return web.json_response({'error': LYRICS_NOT_FOUND_MESSAGE, 'kind': "not_found", 'details': {}}, status=404)
    return web.json_response({'lyrics': text, 'cached': cached})


async def embed_lyrics(request: web.Request) -> web.Response:
    body = await _json_body(request)
    provider = request.app[SERVICES].embedding_provider
    embedding = await provider.embed(body.get('text'))
    return web.json_response({
        'embedding': embedding,
        'dimensions': len(embedding),
        'model': provider.model,
    })


async def create_playlist(request: web.Request) -> web.Response:
    body = await _json_body(request)
    publisher = PlaylistPublisher(_catalog(request))
    playlist = await publisher.publish(
        body.get('trackId'),
        body.get('similarTrackIds'),
        name=body.get('name'),
    )
    return web.json_response(playlist.to_dict())


def create_app(
    settings: Settings,
    *,
    catalog_factory: Optional[CatalogFactory] = None,
    lyrics_provider=None,
    embedding_provider=None,
    rate_limiter: Optional[FixedWindowRateLimiter] = None,
    token_store: Optional[TokenStore] = None,
) -> web.Application:
    """
    Build the aiohttp application

    Collaborators default to the production implementations configured by
    ``settings``; tests pass fakes.
    """
    if catalog_factory is None:
        throttler = Throttler(rate_limit=settings.spotify.requests_per_second, period=1.0)

        def catalog_factory(credentials: CredentialManager) -> SpotifyCatalog:
            return SpotifyCatalog(
                credentials,
                timeout=settings.spotify.timeout,
                market=settings.spotify.market,
                throttler=throttler,
            )

    if lyrics_provider is None:
        lyrics_provider = GeniusLyricsProvider(
            api_key=settings.lyrics.genius_api_key if settings.lyrics.enabled else "",
            timeout=settings.lyrics.timeout,
            retries=settings.lyrics.retries,
            per_page=settings.lyrics.max_search_results,
            fetch_full_text=settings.lyrics.fetch_full_text,
        )

    if embedding_provider is None:
        embedding_provider = OpenAIEmbeddingProvider(
            api_key=settings.embeddings.api_key,
            model=settings.embeddings.model,
            timeout=settings.embeddings.timeout,
        )

    if token_store is None:
        token_store = TokenStore(settings.get_token_storage_path())

    services = Services(
        settings=settings,
        sessions=SessionRegistry(settings, catalog_factory, token_store),
        lyrics_resolver=LyricsResolver(lyrics_provider, TTLCache(settings.lyrics.cache_ttl)),
        embedding_resolver=EmbeddingResolver(embedding_provider, TTLCache(settings.embeddings.cache_ttl)),
        embedding_provider=embedding_provider,
        rate_limiter=rate_limiter if rate_limiter is not None else FixedWindowRateLimiter(
            settings.server.rate_limit_requests, settings.server.rate_limit_window
        ),
    )

    app = web.Application(middlewares=[rate_limit_middleware, error_middleware])
    app[SERVICES] = services
    app.router.add_get('/health', health)
    app.router.add_post('/api/session', create_session)
    app.router.add_delete('/api/session', delete_session)
    app.router.add_get('/api/search', search)
    app.router.add_post('/api/recommend', recommend)
    app.router.add_post('/api/track/analyze', analyze)
    app.router.add_post('/api/track/lyrics', lyrics)
    app.router.add_post('/api/embed/lyrics', embed_lyrics)
    app.router.add_post('/api/playlist/create', create_playlist)
    return app


def run_server(settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the API until interrupted"""
    app = create_app(settings)
    host = host or settings.server.host
    port = port or settings.server.port
    logger.console_info(f"Echoes API listening on http://{host}:{port}")
    web.run_app(app, host=host, port=port, print=None)
