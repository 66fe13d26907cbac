"""
Spotify credential lifecycle for Echoes

Owns the user's access/refresh token pair for one session and keeps it usable:

- Proactive refresh: a token that expires within ``REFRESH_MARGIN_MS`` is
  refreshed before it is handed out.
- Reactive refresh: ``force_refresh`` is called by the catalog retry policy
  when the provider rejects a token. Concurrent callers coalesce into a
  single token request and all receive the rotated token.
- Persistence: when a ``TokenStore`` is attached every rotated credential is
  written back to disk with owner-only permissions.

The refresh request is a form-encoded POST to the Spotify token endpoint
authenticated with HTTP Basic (client id / client secret).
"""

import asyncio
import json
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import requests
from requests.auth import HTTPBasicAuth

from ..utils.exceptions import AuthExpired, RefreshFailed
from ..utils.helpers import now_ms, truncate_string
from ..utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_TOKEN_URL = "https://accounts.spotify.com/api/token"


@dataclass(frozen=True)
class Credential:
    """
    Spotify access/refresh token pair

    Replaced wholesale on refresh, never mutated in place.
    """
    access_token: str
    refresh_token: str
    expires_at_ms: int

    def expires_within(self, now: int, margin_ms: int) -> bool:
        return now >= self.expires_at_ms - margin_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_at': self.expires_at_ms,
            'token_type': 'Bearer',
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Credential':
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token') or "",
            expires_at_ms=int(data['expires_at']),
        )


class TokenStore:
    """
    JSON file storage for a single credential

    Args:
        token_file: Location of the token file (``~`` is expanded)
    """

    REQUIRED_FIELDS = ('access_token', 'refresh_token', 'expires_at')

    def __init__(self, token_file: Union[str, Path]):
        self.token_file = Path(token_file).expanduser()

    def load(self) -> Optional[Credential]:
        """
        Load and validate the stored credential

        Returns:
            The stored credential, or None when the file is missing, unreadable
            or lacks one of the required fields
        """
        if not self.token_file.exists():
            return None

        try:
            with open(self.token_file, 'r', encoding='utf-8') as f:
                token_data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load stored token: {e}")
            return None

        if not all(field in token_data for field in self.REQUIRED_FIELDS):
            logger.warning("Invalid token structure, re-authentication required")
            return None

        return Credential.from_dict(token_data)

    def save(self, credential: Credential) -> None:
        """Write the credential with 0600 permissions"""
        self.token_file.parent.mkdir(parents=True, exist_ok=True)

        token_data = {**credential.to_dict(), 'saved_at': datetime.now().isoformat()}
        with open(self.token_file, 'w', encoding='utf-8') as f:
            json.dump(token_data, f, indent=2)

        try:
            self.token_file.chmod(0o600)
        except OSError:
            # chmod is a no-op on some platforms
            logger.debug(f"Could not restrict permissions on {self.token_file}")

    def clear(self) -> bool:
        """Delete the token file; returns True when a file was removed"""
        if self.token_file.exists():
            self.token_file.unlink()
            return True
        return False


class CredentialManager:
    """
    Keeps one session's Spotify credential valid

    Args:
        credential: Initial credential (None means the session is not signed in)
        client_id: Spotify application client id
        client_secret: Spotify application client secret
        token_url: Token endpoint used for refresh
        store: Optional persistence for rotated credentials
        clock: Callable returning epoch milliseconds
        timeout: HTTP timeout for the refresh request in seconds

    ``refresh_rejected`` is set once the token endpoint refuses the refresh
    token; the session then needs a new sign-in.
    """

    REFRESH_MARGIN_MS = 60_000

    def __init__(
        self,
        credential: Optional[Credential],
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_TOKEN_URL,
        store: Optional[TokenStore] = None,
        clock: Callable[[], int] = now_ms,
        timeout: float = 30,
    ):
        self._credential = credential
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.store = store
        self.clock = clock
        self.timeout = timeout
        self.refresh_count = 0
        self.refresh_rejected = False
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def is_authenticated(self) -> bool:
        return self._credential is not None

    def set_credential(self, credential: Optional[Credential]) -> None:
        """Replace the session credential (sign-in or sign-out)"""
        self._credential = credential
        self.refresh_rejected = False
        if credential is not None and self.store is not None:
            self.store.save(credential)

    async def get_valid_token(self) -> str:
        """
        Return an access token that is not about to expire

        Refreshes first when the token expires within the refresh margin.

        Raises:
            AuthExpired: No credential exists or the proactive refresh failed
        """
        credential = self._credential
        if credential is None:
            raise AuthExpired("No Spotify session, please sign in")

        if not credential.expires_within(self.clock(), self.REFRESH_MARGIN_MS):
            return credential.access_token

        async with self._lock:
            current = self._credential
            if current is None:
                raise AuthExpired("Signed out while waiting for token refresh")
            # Another task may have refreshed while this one waited
            if current is not credential and not current.expires_within(self.clock(), self.REFRESH_MARGIN_MS):
                return current.access_token

            try:
                refreshed = await self._refresh_locked()
            except RefreshFailed as e:
                raise AuthExpired(
                    "Spotify session expired, please sign in again",
                    details={'reason': e.message, 'status': e.status}
                ) from e

        return refreshed.access_token

    async def refresh(self) -> Credential:
        """
        Exchange the refresh token for a new access token

        Raises:
            RefreshFailed: The token endpoint rejected the request
        """
        async with self._lock:
            return await self._refresh_locked()

    async def force_refresh(self, stale_token: str) -> str:
        """
        Refresh after the provider rejected ``stale_token``

        When another task already rotated the token, the current one is
        returned without a second token request.

        Raises:
            RefreshFailed: The token endpoint rejected the request
        """
        async with self._lock:
            current = self._credential
            if current is not None and current.access_token != stale_token:
                return current.access_token
            refreshed = await self._refresh_locked()
        return refreshed.access_token

    async def _refresh_locked(self) -> Credential:
        credential = self._credential
        if credential is None or not credential.refresh_token:
            self.refresh_rejected = True
            raise RefreshFailed("No refresh token available")

        if not self.client_id or not self.client_secret:
            raise RefreshFailed("Spotify client_id and client_secret are required to refresh tokens")

        logger.debug("Refreshing Spotify access token")

        try:
            response = await asyncio.to_thread(
                requests.post,
                self.token_url,
                data={
                    'grant_type': 'refresh_token',
                    'refresh_token': credential.refresh_token,
                },
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                auth=HTTPBasicAuth(self.client_id, self.client_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RefreshFailed(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            body = truncate_string(response.text or "", 500)
            logger.warning(f"Token refresh rejected: HTTP {response.status_code}")
            self.refresh_rejected = True
            raise RefreshFailed(
                f"Token refresh rejected with HTTP {response.status_code}",
                details={'body': body},
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise RefreshFailed("Token endpoint returned invalid JSON") from e

        access_token = payload.get('access_token')
        if not access_token:
            raise RefreshFailed("Token endpoint response has no access_token", details={'body': payload})

        expires_in = int(payload.get('expires_in', 3600))
        refreshed = replace(
            credential,
            access_token=access_token,
            # Spotify usually keeps the refresh token; adopt a new one if sent
            refresh_token=payload.get('refresh_token') or credential.refresh_token,
            expires_at_ms=self.clock() + expires_in * 1000,
        )

        self._credential = refreshed
        self.refresh_count += 1
        self.refresh_rejected = False

        if self.store is not None:
            try:
                self.store.save(refreshed)
            except OSError as e:
                logger.warning(f"Failed to save refreshed token: {e}")

        logger.info(f"Spotify token refreshed, valid for {expires_in}s")
        return refreshed
