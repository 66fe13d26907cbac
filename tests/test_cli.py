"""Test the command-line interface"""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from echoes import __version__
from echoes.config.auth import Credential, TokenStore
from echoes.main import cli
from echoes.recommend.engine import RecommendationEngine
from echoes.embeddings.resolver import EmbeddingResolver
from echoes.lyrics.resolver import LyricsResolver

from conftest import FakeCatalog, FakeEmbeddingProvider, FakeLyricsProvider, make_track


@pytest.fixture
def cli_settings(settings):
    settings.logging.file = ""
    settings.logging.console_output = False
    with patch('echoes.config.settings._settings', settings):
        yield settings


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    """Test CLI commands"""

    def test_version(self, runner):
        result = runner.invoke(cli, ['--version'])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_auth_import_and_status(self, runner, cli_settings, temp_dir):
        token_file = temp_dir / "login.json"
        token_file.write_text(json.dumps({'access_token': "a", 'refresh_token': "r", 'expires_in': 3600}))

        imported = runner.invoke(cli, ['auth', 'import', str(token_file)])
        status = runner.invoke(cli, ['auth', 'status'])

        assert imported.exit_code == 0
        assert TokenStore(cli_settings.get_token_storage_path()).load().refresh_token == "r"
        assert "Token stored" in status.output
        assert "Refresh token: present" in status.output

    def test_logout(self, runner, cli_settings):
        TokenStore(cli_settings.get_token_storage_path()).save(Credential("a", "r", 1))

        first = runner.invoke(cli, ['auth', 'logout'])
        second = runner.invoke(cli, ['auth', 'logout'])

        assert "Successfully logged out" in first.output
        assert "No stored token" in second.output

    def test_recommend_without_token(self, runner, cli_settings):
        result = runner.invoke(cli, ['recommend', 'seed'])

        assert result.exit_code == 1
        assert "No stored Spotify token" in result.output

    def test_recommend_json(self, runner, cli_settings):
        catalog = FakeCatalog([make_track("seed", title="Seed")])
        catalog.recommendation_handler = lambda seeds, artists, targets: [make_track("c1")]
        engine = RecommendationEngine(
            catalog,
            LyricsResolver(FakeLyricsProvider()),
            EmbeddingResolver(FakeEmbeddingProvider()),
        )

        with patch('echoes.main._engine', return_value=engine):
            result = runner.invoke(cli, ['recommend', 'seed', '--lyrics', '0', '--spotify', '0', '--json'])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data['sourceTrackId'] == "seed"
        assert data['weights'] == {'lyrics': 0.0, 'audio': 1.0, 'spotify': 0.0}

    def test_config_validate_reports_problems(self, runner, cli_settings):
        result = runner.invoke(cli, ['config', 'validate'])

        assert result.exit_code == 1
        assert "Genius API key missing" in result.output

    def test_config_save(self, runner, cli_settings, temp_dir):
        target = temp_dir / "out.yaml"
        result = runner.invoke(cli, ['config', 'save', '--path', str(target)])

        assert result.exit_code == 0
        assert target.exists()
