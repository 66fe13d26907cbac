"""Test configuration loading"""

import yaml

from echoes.config.settings import Settings


class TestSettings:
    """Test YAML and environment configuration"""

    def test_defaults(self, settings):
        assert settings.recommendation.lyrics_weight == 0.5
        assert settings.recommendation.audio_weight == 0.35
        assert settings.recommendation.spotify_weight == 0.15
        assert settings.recommendation.min_results == 30
        assert settings.server.rate_limit_requests == 60
        assert settings.embeddings.model == "text-embedding-3-large"

    def test_yaml_config(self, temp_dir, settings):
        path = temp_dir / "custom.yaml"
        path.write_text(yaml.dump({
            'recommendation': {'lyrics_weight': 1.0, 'min_results': 10},
            'server': {'port': 9000},
            'unknown_section': {'x': 1},
            'lyrics': {'not_a_field': True},
        }))

        loaded = Settings(str(path))

        assert loaded.recommendation.lyrics_weight == 1.0
        assert loaded.recommendation.min_results == 10
        assert loaded.server.port == 9000
        assert not hasattr(loaded.lyrics, 'not_a_field')

    def test_environment_overrides(self, settings, monkeypatch):
        monkeypatch.setenv('SPOTIFY_CLIENT_ID', 'env_id')
        monkeypatch.setenv('GENIUS_ACCESS_TOKEN', 'genius_token')
        monkeypatch.setenv('OPENAI_API_KEY', 'sk-test')
        monkeypatch.setenv('ECHOES_PORT', '9999')

        loaded = Settings()

        assert loaded.spotify.client_id == 'env_id'
        assert loaded.lyrics.genius_api_key == 'genius_token'
        assert loaded.embeddings.api_key == 'sk-test'
        assert loaded.server.port == 9999

    def test_save_blanks_secrets(self, temp_dir, settings):
        settings.embeddings.api_key = "sk-secret"

        path = settings.save_config(str(temp_dir / "saved.yaml"))
        data = yaml.safe_load(path.read_text())

        assert data['embeddings']['api_key'] == ""
        assert data['spotify']['client_secret'] == ""
        assert data['recommendation']['min_results'] == 30

    def test_validate(self, settings):
        settings.lyrics.genius_api_key = "g"
        settings.embeddings.api_key = "o"
        assert settings.validate() == []

        settings.recommendation.audio_weight = -1
        settings.spotify.candidate_pool_size = 500
        problems = settings.validate()
        assert len(problems) == 2
