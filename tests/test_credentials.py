"""Test credential lifecycle, token storage and the refresh retry policy"""

import asyncio
import json
import os
import stat
from unittest.mock import Mock, patch

import pytest
import requests

from echoes.config.auth import Credential, CredentialManager, TokenStore
from echoes.spotify.client import RefreshRetryPolicy
from echoes.utils.exceptions import AuthExpired, RefreshFailed, UpstreamError

from conftest import FakeClock


def token_response(status=200, payload=None, text=""):
    response = Mock()
    response.status_code = status
    response.text = text
    response.json.return_value = payload if payload is not None else {'access_token': 'new_access', 'expires_in': 3600}
    return response


def manager(clock, expires_in_ms=3_600_000, store=None, refresh_token="refresh_1"):
    credential = Credential('old_access', refresh_token, clock() + expires_in_ms)
    return CredentialManager(credential, 'client', 'secret', store=store, clock=clock)


class TestCredentialManager:
    """Test proactive and reactive refresh"""

    @pytest.mark.asyncio
    async def test_valid_token_not_refreshed(self):
        clock = FakeClock()
        creds = manager(clock)

        with patch('echoes.config.auth.requests.post') as post:
            assert await creds.get_valid_token() == 'old_access'
            post.assert_not_called()

    @pytest.mark.asyncio
    async def test_expiring_token_refreshed_once(self):
        """A token expiring in 30s is refreshed exactly once before use"""
        clock = FakeClock()
        creds = manager(clock, expires_in_ms=30_000)

        with patch('echoes.config.auth.requests.post', return_value=token_response()) as post:
            token = await creds.get_valid_token()

        assert token == 'new_access'
        assert post.call_count == 1
        assert creds.credential.expires_at_ms == clock() + 3_600_000

    @pytest.mark.asyncio
    async def test_refresh_request_shape(self):
        """Basic auth with client credentials and a form-encoded grant"""
        clock = FakeClock()
        creds = manager(clock)

        with patch('echoes.config.auth.requests.post', return_value=token_response()) as post:
            await creds.refresh()

        args, kwargs = post.call_args
        assert args[0] == "https://accounts.spotify.com/api/token"
        assert kwargs['data'] == {'grant_type': 'refresh_token', 'refresh_token': 'refresh_1'}
        assert kwargs['auth'].username == 'client'
        assert kwargs['auth'].password == 'secret'

    @pytest.mark.asyncio
    async def test_refresh_token_reused(self):
        clock = FakeClock()
        creds = manager(clock)

        with patch('echoes.config.auth.requests.post', return_value=token_response()):
            refreshed = await creds.refresh()

        assert refreshed.refresh_token == 'refresh_1'

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_adopted(self):
        clock = FakeClock()
        creds = manager(clock)
        payload = {'access_token': 'a2', 'expires_in': 60, 'refresh_token': 'refresh_2'}

        with patch('echoes.config.auth.requests.post', return_value=token_response(payload=payload)):
            refreshed = await creds.refresh()

        assert refreshed.refresh_token == 'refresh_2'

    @pytest.mark.asyncio
    async def test_proactive_refresh_failure_is_auth_expired(self):
        clock = FakeClock()
        creds = manager(clock, expires_in_ms=10_000)

        with patch('echoes.config.auth.requests.post', return_value=token_response(status=400, text='invalid_grant')):
            with pytest.raises(AuthExpired):
                await creds.get_valid_token()

        assert creds.refresh_rejected is True

    @pytest.mark.asyncio
    async def test_sign_out_during_refresh_wait(self):
        """A caller queued behind a refresh sees the sign-out as an expired session"""
        clock = FakeClock()
        creds = manager(clock, expires_in_ms=10_000)

        with patch('echoes.config.auth.requests.post') as post:
            async with creds._lock:
                waiting = asyncio.ensure_future(creds.get_valid_token())
                await asyncio.sleep(0)
                creds.set_credential(None)

            with pytest.raises(AuthExpired):
                await waiting

        post.assert_not_called()

    @pytest.mark.asyncio
    async def test_network_error_does_not_mark_rejected(self):
        creds = manager(FakeClock())
        with patch('echoes.config.auth.requests.post', side_effect=requests.ConnectionError("down")):
            with pytest.raises(RefreshFailed):
                await creds.refresh()

        assert creds.refresh_rejected is False

    @pytest.mark.asyncio
    async def test_missing_credential(self):
        creds = CredentialManager(None, 'client', 'secret')
        with pytest.raises(AuthExpired):
            await creds.get_valid_token()

    @pytest.mark.asyncio
    async def test_refresh_network_error(self):
        creds = manager(FakeClock())
        with patch('echoes.config.auth.requests.post', side_effect=requests.ConnectionError("down")):
            with pytest.raises(RefreshFailed):
                await creds.refresh()

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self):
        creds = manager(FakeClock(), refresh_token="")
        with pytest.raises(RefreshFailed):
            await creds.refresh()

    @pytest.mark.asyncio
    async def test_concurrent_force_refresh_coalesces(self):
        """Concurrent rejections of the same token trigger a single refresh"""
        creds = manager(FakeClock())

        with patch('echoes.config.auth.requests.post', return_value=token_response()) as post:
            tokens = await asyncio.gather(*(creds.force_refresh('old_access') for _ in range(5)))

        assert tokens == ['new_access'] * 5
        assert post.call_count == 1

    @pytest.mark.asyncio
    async def test_refreshed_credential_persisted(self, temp_dir):
        store = TokenStore(temp_dir / "token.json")
        creds = manager(FakeClock(), store=store)

        with patch('echoes.config.auth.requests.post', return_value=token_response()):
            await creds.refresh()

        assert store.load().access_token == 'new_access'


class TestTokenStore:
    """Test token file storage"""

    def test_save_and_load(self, temp_dir):
        store = TokenStore(temp_dir / "nested" / "token.json")
        store.save(Credential('a', 'r', 123))

        loaded = store.load()
        assert loaded == Credential('a', 'r', 123)

    @pytest.mark.skipif(os.name == 'nt', reason="POSIX permissions")
    def test_owner_only_permissions(self, temp_dir):
        store = TokenStore(temp_dir / "token.json")
        store.save(Credential('a', 'r', 123))

        mode = stat.S_IMODE(store.token_file.stat().st_mode)
        assert mode == 0o600

    def test_invalid_structure_rejected(self, temp_dir):
        path = temp_dir / "token.json"
        path.write_text(json.dumps({'access_token': 'a'}))

        assert TokenStore(path).load() is None

    def test_corrupt_file_rejected(self, temp_dir):
        path = temp_dir / "token.json"
        path.write_text("{not json")

        assert TokenStore(path).load() is None

    def test_clear(self, temp_dir):
        store = TokenStore(temp_dir / "token.json")
        store.save(Credential('a', 'r', 123))

        assert store.clear() is True
        assert store.load() is None
        assert store.clear() is False


class TestRefreshRetryPolicy:
    """Test the single reactive refresh-and-retry"""

    @pytest.mark.asyncio
    async def test_403_retried_once_with_fresh_token(self):
        creds = manager(FakeClock())
        seen = []

        async def call(token):
            seen.append(token)
            if token == 'old_access':
                raise UpstreamError("forbidden", status=403)
            return "ok"

        with patch('echoes.config.auth.requests.post', return_value=token_response()):
            result = await RefreshRetryPolicy(creds).run(call)

        assert result == "ok"
        assert seen == ['old_access', 'new_access']

    @pytest.mark.asyncio
    async def test_second_403_surfaces_unchanged(self):
        creds = manager(FakeClock())
        attempts = []

        async def call(token):
            attempts.append(token)
            raise UpstreamError("forbidden", status=403, body=f"denied {len(attempts)}")

        with patch('echoes.config.auth.requests.post', return_value=token_response()):
            with pytest.raises(UpstreamError) as exc_info:
                await RefreshRetryPolicy(creds).run(call)

        assert exc_info.value.status == 403
        assert exc_info.value.body == "denied 2"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_failed_refresh_surfaces_original_error(self):
        creds = manager(FakeClock())

        async def call(token):
            raise UpstreamError("forbidden", status=403, body="original")

        with patch('echoes.config.auth.requests.post', return_value=token_response(status=400)):
            with pytest.raises(UpstreamError) as exc_info:
                await RefreshRetryPolicy(creds).run(call)

        assert exc_info.value.body == "original"

    @pytest.mark.asyncio
    async def test_other_statuses_not_retried(self):
        creds = manager(FakeClock())
        attempts = []

        async def call(token):
            attempts.append(token)
            raise UpstreamError("not found", status=404)

        with patch('echoes.config.auth.requests.post') as post:
            with pytest.raises(UpstreamError):
                await RefreshRetryPolicy(creds).run(call)

        assert attempts == ['old_access']
        post.assert_not_called()
