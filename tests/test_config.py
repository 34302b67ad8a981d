"""
Tests for configuration and logging.

These tests verify:
- Configuration loading and validation
- Secret tracking and redaction
- Logger namespacing
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

CONFIG_VARS = [
    "SHIELD_DATABASE_PATH",
    "LOG_LEVEL",
    "LOG_FILE",
    "MAINTENANCE_INTERVAL",
    "ENABLE_ANTISPAM",
    "ENABLE_AUTOMOD",
    "ENABLE_LINKFILTER",
    "ENABLE_ANTIRAID",
    "STATUS_HOST",
    "STATUS_PORT",
    "STATUS_TOKEN",
    "PLATFORM_TOKEN",
]


@pytest.fixture
def clean_env():
    """Run with every config variable unset."""
    with patch.dict(os.environ, {}, clear=False):
        for var in CONFIG_VARS:
            os.environ.pop(var, None)
        yield


class TestConfig:
    """Tests for configuration loading."""

    def test_config_defaults(self, clean_env) -> None:
        """Test that an empty environment gives the defaults."""
        from raidshield.config import load_config

        config = load_config()

        assert config.database_path == "data/raidshield.db"
        assert config.log_level == "INFO"
        assert config.log_file is None
        assert config.maintenance_interval == 300.0
        assert config.enable_antispam is True
        assert config.enable_antiraid is True
        assert config.status_port == 0
        assert config.status_enabled is False

    def test_config_loads_with_valid_env(self, clean_env) -> None:
        """Test that config loads successfully with valid environment."""
        from raidshield.config import load_config

        env_vars = {
            "SHIELD_DATABASE_PATH": "/tmp/shield-test.db",
            "LOG_LEVEL": "debug",
            "MAINTENANCE_INTERVAL": "30",
            "ENABLE_AUTOMOD": "false",
            "STATUS_PORT": "8089",
            "STATUS_TOKEN": "status_token_12345",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            config = load_config()

            assert config.database_path == "/tmp/shield-test.db"
            assert config.log_level == "DEBUG"
            assert config.maintenance_interval == 30.0
            assert config.enable_automod is False
            assert config.enable_linkfilter is True
            assert config.status_port == 8089
            assert config.status_enabled is True

    def test_config_invalid_values_raise(self, clean_env) -> None:
        """Test that invalid numeric settings are all reported together."""
        from raidshield.config import load_config

        env_vars = {
            "MAINTENANCE_INTERVAL": "-5",
            "STATUS_PORT": "not-a-port",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            with pytest.raises(ValueError) as exc_info:
                load_config()

        message = str(exc_info.value)
        assert "Configuration errors" in message
        assert "MAINTENANCE_INTERVAL" in message
        assert "STATUS_PORT" in message

    def test_config_non_numeric_interval(self, clean_env) -> None:
        from raidshield.config import load_config

        with patch.dict(os.environ, {"MAINTENANCE_INTERVAL": "abc"}, clear=False):
            with pytest.raises(ValueError, match="MAINTENANCE_INTERVAL"):
                load_config()

    def test_config_port_out_of_range(self, clean_env) -> None:
        from raidshield.config import load_config

        with patch.dict(os.environ, {"STATUS_PORT": "70000"}, clear=False):
            with pytest.raises(ValueError, match="STATUS_PORT"):
                load_config()

    def test_config_unknown_log_level_falls_back(self, clean_env) -> None:
        from raidshield.config import load_config

        with patch.dict(os.environ, {"LOG_LEVEL": "chatty"}, clear=False):
            assert load_config().log_level == "INFO"

    def test_config_parses_bool_correctly(self) -> None:
        """Test boolean parsing from environment variables."""
        from raidshield.config import _parse_bool

        assert _parse_bool("true") is True
        assert _parse_bool("True") is True
        assert _parse_bool("1") is True
        assert _parse_bool("yes") is True
        assert _parse_bool("on") is True

        assert _parse_bool("false") is False
        assert _parse_bool("0") is False
        assert _parse_bool("") is False
        assert _parse_bool(None) is False

        # Default value
        assert _parse_bool(None, default=True) is True

    def test_config_parses_numbers(self) -> None:
        from raidshield.config import _parse_float, _parse_int

        assert _parse_int("42", 0) == 42
        assert _parse_int("x", 7) == 7
        assert _parse_int(None, 3) == 3
        assert _parse_float("1.5", 0.0) == 1.5
        assert _parse_float("bad", 2.0) == 2.0

    def test_config_secrets_filtering(self, clean_env) -> None:
        """Test that secrets are properly tracked for filtering."""
        from raidshield.config import load_config

        env_vars = {
            "STATUS_TOKEN": "secret_status_token",
            "PLATFORM_TOKEN": "secret_platform_token",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            config = load_config()

        assert "secret_status_token" in config.secrets
        assert "secret_platform_token" in config.secrets

    def test_config_no_secrets_when_unset(self) -> None:
        from raidshield.config import Config

        assert Config().secrets == []


class TestLogging:
    """Tests for logging utilities."""

    def test_secret_filter_redacts_secrets(self) -> None:
        """Test that SecretFilter properly redacts secrets."""
        from raidshield.utils.logging import SecretFilter

        filter_instance = SecretFilter(["mysecret123", "anotherSecret"])

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="Token is mysecret123 and key is anotherSecret",
            args=(),
            exc_info=None,
        )

        filter_instance.filter(record)

        assert "mysecret123" not in record.msg
        assert "anotherSecret" not in record.msg
        assert "[REDACTED]" in record.msg

    def test_secret_filter_redacts_args(self) -> None:
        from raidshield.utils.logging import SecretFilter

        filter_instance = SecretFilter(["mysecret123"])
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="Token is %s",
            args=("mysecret123",),
            exc_info=None,
        )

        filter_instance.filter(record)

        assert record.getMessage() == "Token is [REDACTED]"

    def test_secret_filter_handles_empty_secrets(self) -> None:
        """Test that SecretFilter ignores empty and short secrets."""
        from raidshield.utils.logging import SecretFilter

        filter_instance = SecretFilter(["ab", ""])

        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="",
            lineno=0,
            msg="Short ab should not be filtered",
            args=(),
            exc_info=None,
        )

        filter_instance.filter(record)

        assert "ab" in record.msg
        assert filter_instance.secrets == []

    def test_get_logger_namespaced(self) -> None:
        from raidshield.utils.logging import get_logger

        assert get_logger("engine").name == "raidshield.engine"
        assert get_logger("raidshield.engine").name == "raidshield.engine"

    def test_setup_logging_writes_file(self, tmp_path) -> None:
        from raidshield.config import Config
        from raidshield.utils.logging import get_logger, setup_logging

        log_file = tmp_path / "logs" / "shield.log"
        config = Config(log_file=str(log_file), platform_token="platform_secret_value")
        setup_logging(config)
        try:
            get_logger("tests").warning("token=%s", "platform_secret_value")
            for handler in logging.getLogger("raidshield").handlers:
                handler.flush()

            text = log_file.read_text(encoding="utf-8")
            assert "token=[REDACTED]" in text
            assert "platform_secret_value" not in text
        finally:
            root = logging.getLogger("raidshield")
            for handler in list(root.handlers):
                handler.close()
                root.removeHandler(handler)
            logging.getLogger("aiohttp").handlers.clear()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
