"""
Tests for engine configuration
"""

from apiflow.config import EngineConfig


class TestEngineConfig:
    """Test defaults and environment overrides"""

    def test_defaults(self):
        """Test the built-in limits"""
        config = EngineConfig()
        assert config.max_execution_time_ms == 600000
        assert config.max_depth == 50
        assert config.max_delay_ms == 30000
        assert config.node_retries == 0
        assert config.cache_ttl_seconds == 300

    def test_from_env(self, monkeypatch):
        """Test reading settings from environment variables"""
        monkeypatch.setenv('BACKEND_URL', 'https://backend.test/api')
        monkeypatch.setenv('APIFLOW_MAX_DEPTH', '10')
        monkeypatch.setenv('APIFLOW_ALLOW_LOCALHOST', 'false')
        monkeypatch.setenv('APIFLOW_BLOCKED_DOMAINS', 'evil.test, worse.test')

        config = EngineConfig.from_env()

        assert config.backend_url == 'https://backend.test/api'
        assert config.max_depth == 10
        assert config.allow_localhost is False
        assert config.blocked_domains == ['evil.test', 'worse.test']

    def test_url_policy(self):
        """Test that the URL policy mirrors the config"""
        policy = EngineConfig(allow_private_ips=False, allowed_domains=['api.test']).url_policy()
        assert policy.allow_private_ips is False
        assert policy.allowed_domains == ['api.test']
