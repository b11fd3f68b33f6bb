"""
Unit tests for configuration and the command-line interface.
"""

import pytest

from logserver import __version__
from logserver.config import ServerConfig
from logserver.__main__ import build_parser, config_from_args, main


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        """Test the documented defaults."""
        config = ServerConfig()

        assert config.host == "0.0.0.0"
        assert config.port == 9000
        assert config.backlog == 20
        assert config.log_path == "/var/tmp/aesdsocketdata"
        assert config.keep_open
        assert not config.truncate_on_start
        assert not config.delete_on_shutdown
        assert config.timer_enabled
        assert config.timer_interval == 10.0
        assert config.drain_timeout is None
        config.validate()

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 65536},
        {"backlog": 0},
        {"buffer_size": 0},
        {"poll_interval": 0},
        {"bind_retries": 0},
        {"timer_interval": 0},
        {"drain_timeout": 0},
        {"log_path": ""},
        {"log_format": "xml"},
    ])
    def test_validate_rejects(self, overrides):
        """Test invalid values."""
        with pytest.raises(ValueError):
            ServerConfig(**overrides).validate()

    def test_from_env(self, monkeypatch):
        """Test environment overrides."""
        monkeypatch.setenv("LOGSERVER_PORT", "9100")
        monkeypatch.setenv("LOGSERVER_LOG_PATH", "/tmp/other")
        monkeypatch.setenv("LOGSERVER_KEEP_OPEN", "0")
        monkeypatch.setenv("LOGSERVER_TRUNCATE", "yes")
        monkeypatch.setenv("LOGSERVER_TIMER_INTERVAL", "2.5")
        monkeypatch.setenv("LOGSERVER_LOG_FORMAT", "json")

        config = ServerConfig.from_env()

        assert config.port == 9100
        assert config.log_path == "/tmp/other"
        assert not config.keep_open
        assert config.truncate_on_start
        assert config.timer_interval == 2.5
        assert config.log_format == "json"

    def test_from_env_defaults(self, monkeypatch):
        """Test that an empty environment gives the defaults."""
        for name in ("LOGSERVER_PORT", "LOGSERVER_LOG_PATH", "LOGSERVER_KEEP_OPEN",
                     "LOGSERVER_TRUNCATE", "LOGSERVER_TIMER"):
            monkeypatch.delenv(name, raising=False)

        config = ServerConfig.from_env()
        assert config.port == 9000
        assert config.keep_open
        assert config.timer_enabled


class TestCommandLine:
    """Tests for the CLI argument handling."""

    def test_flags_override_config(self, monkeypatch):
        """Test every switch lands in the config."""
        monkeypatch.delenv("LOGSERVER_PORT", raising=False)
        args = build_parser().parse_args([
            "-H", "127.0.0.1", "-p", "9200", "-f", "/tmp/data",
            "--reopen", "--truncate", "--delete-on-exit", "--fsync",
            "-t", "1.5", "--no-timer", "-l", "DEBUG", "--log-format", "json",
        ])

        config = config_from_args(args)

        assert config.host == "127.0.0.1"
        assert config.port == 9200
        assert config.log_path == "/tmp/data"
        assert not config.keep_open
        assert config.truncate_on_start
        assert config.delete_on_shutdown
        assert config.fsync
        assert config.timer_interval == 1.5
        assert not config.timer_enabled
        assert config.log_level == "DEBUG"
        assert config.log_format == "json"

    def test_daemon_flag(self):
        """Test -d parsing."""
        assert build_parser().parse_args(["-d"]).daemon
        assert not build_parser().parse_args([]).daemon

    def test_version(self, capsys):
        """Test --version output."""
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(["--version"])

        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_invalid_port_is_usage_error(self):
        """Test that an out-of-range port exits with a usage error."""
        with pytest.raises(SystemExit) as exc:
            main(["--port", "70000"])

        assert exc.value.code == 2

    def test_unwritable_log_path_exits_1(self, tmp_path):
        """Test that a log file that cannot be created fails startup."""
        blocker = tmp_path / "file"
        blocker.write_bytes(b"")

        code = main(["-H", "127.0.0.1", "-p", "0", "-f", str(blocker / "data"), "--no-timer"])

        assert code == 1
