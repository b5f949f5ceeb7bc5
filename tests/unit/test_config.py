"""
Unit tests for server configuration.
"""

import pytest

from coroserver import ServerConfig


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()

        assert config.host == "::"
        assert config.port == 8080
        assert config.backlog == 10
        assert config.max_connections == 30
        assert config.idle_timeout is None
        config.validate()

    @pytest.mark.parametrize("field,value", [
        ("port", -1),
        ("port", 70000),
        ("backlog", 0),
        ("max_connections", 0),
        ("scratch_size", 10),
        ("max_line_length", 100),
        ("poll_interval", 0),
        ("idle_timeout", -1.0),
        ("log_format", "xml"),
    ])
    def test_invalid_values(self, field, value):
        config = ServerConfig(**{field: value})

        with pytest.raises(ValueError):
            config.validate()

    def test_blocking_poll_allowed(self):
        ServerConfig(poll_interval=None).validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CORO_HOST", "127.0.0.1")
        monkeypatch.setenv("CORO_PORT", "7007")
        monkeypatch.setenv("CORO_MAX_CONNECTIONS", "5")
        monkeypatch.setenv("CORO_IDLE_TIMEOUT", "2.5")
        monkeypatch.setenv("CORO_LOG_FORMAT", "json")

        config = ServerConfig.from_env()

        assert config.host == "127.0.0.1"
        assert config.port == 7007
        assert config.max_connections == 5
        assert config.idle_timeout == 2.5
        assert config.log_format == "json"

    def test_from_env_defaults(self, monkeypatch):
        for name in ("CORO_HOST", "CORO_PORT", "CORO_MAX_CONNECTIONS",
                     "CORO_IDLE_TIMEOUT", "CORO_LOG_LEVEL", "CORO_LOG_FORMAT"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()

        assert config.port == 8080
        assert config.idle_timeout is None
