"""
Unit tests for ServerConfig.
"""

import pytest

from respserver.config import DEFAULT_PORT, DEFAULT_UNIX_PATH, ServerConfig
from respserver.errors import ConfigurationError


class TestDefaults:
    """Tests for default values and derived addresses."""

    def test_defaults(self):
        """Test defaults validate and describe a TCP server."""
        config = ServerConfig()
        config.validate()

        assert config.transport == "tcp"
        assert config.handler is None
        assert config.commands == {}
        assert config.read_poll_interval is None
        assert config.bind_address == ("127.0.0.1", DEFAULT_PORT)

    def test_unix_default_path(self):
        """Test unix transport defaults to /tmp/redis.sock."""
        config = ServerConfig(transport="unix")
        assert config.bind_address == DEFAULT_UNIX_PATH

    def test_port_zero_is_kept(self):
        """Test port 0 (OS picks) is not replaced by the default."""
        assert ServerConfig(port=0).bind_address == ("127.0.0.1", 0)

    def test_commands_not_shared(self):
        """Test each config gets its own commands dict."""
        first, second = ServerConfig(), ServerConfig()
        first.commands["X"] = print
        assert second.commands == {}


class TestFluentSetters:
    """Tests for chained configuration."""

    def test_chain_returns_same_config(self):
        """Test setters return the config itself."""
        handler = object()

        def ping() -> str:
            return "PONG"

        config = ServerConfig()
        result = (
            config.with_transport("tcp")
            .with_address("0.0.0.0")
            .with_port(7000)
            .with_handler(handler)
            .with_command("PING", ping)
        )

        assert result is config
        assert config.bind_address == ("0.0.0.0", 7000)
        assert config.handler is handler
        assert config.commands == {"PING": ping}

    def test_unix_address(self):
        """Test address is the socket path for unix."""
        config = ServerConfig().with_transport("unix").with_address("/tmp/x.sock")
        assert config.bind_address == "/tmp/x.sock"


class TestFromEnv:
    """Tests for environment configuration."""

    def test_reads_variables(self, monkeypatch):
        """Test RESP_* variables are applied."""
        monkeypatch.setenv("RESP_TRANSPORT", "unix")
        monkeypatch.setenv("RESP_ADDRESS", "/tmp/env.sock")
        monkeypatch.setenv("RESP_WORKERS", "10")
        monkeypatch.setenv("RESP_IDLE_TIMEOUT", "30")
        monkeypatch.setenv("RESP_LOG_FORMAT", "json")

        config = ServerConfig.from_env()

        assert config.transport == "unix"
        assert config.bind_address == "/tmp/env.sock"
        assert config.max_workers == 10
        assert config.idle_timeout == 30.0
        assert config.log_format == "json"

    def test_defaults_without_variables(self, monkeypatch):
        """Test missing variables fall back to defaults."""
        for name in ("RESP_TRANSPORT", "RESP_ADDRESS", "RESP_PORT", "RESP_WORKERS",
                     "RESP_IDLE_TIMEOUT", "RESP_LOG_LEVEL", "RESP_LOG_FORMAT"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()

        assert config.bind_address == ("127.0.0.1", DEFAULT_PORT)
        assert config.idle_timeout is None

    def test_invalid_number(self, monkeypatch):
        """Test malformed numbers raise ConfigurationError."""
        monkeypatch.setenv("RESP_PORT", "not-a-port")
        with pytest.raises(ConfigurationError):
            ServerConfig.from_env()


class TestValidation:
    """Tests for validate()."""

    @pytest.mark.parametrize("overrides,message", [
        ({"transport": "udp"}, "Invalid transport"),
        ({"port": 70000}, "Invalid port"),
        ({"port": -1}, "Invalid port"),
        ({"backlog": 0}, "backlog"),
        ({"buffer_size": 10}, "buffer_size"),
        ({"min_workers": 0}, "min_workers"),
        ({"min_workers": 8, "max_workers": 4}, "max_workers"),
        ({"max_pending": 0}, "max_pending"),
        ({"accept_poll_interval": 0}, "accept_poll_interval"),
        ({"read_poll_interval": -1.0}, "read_poll_interval"),
        ({"idle_timeout": 0}, "idle_timeout"),
        ({"shutdown_grace_period": -1}, "shutdown_grace_period"),
        ({"log_format": "xml"}, "log_format"),
        ({"commands": {"X": "not callable"}}, "not callable"),
    ])
    def test_invalid_values(self, overrides, message):
        """Test each invalid value is rejected."""
        with pytest.raises(ConfigurationError, match=message):
            ServerConfig(**overrides).validate()
