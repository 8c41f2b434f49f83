"""
Test foundation components
"""
import pytest
from dataclasses import FrozenInstanceError
import os
from datetime import datetime, timezone
from unittest.mock import patch

from common.config import Config, NCentralConfig, AppConfig, load_config
from common.logging import setup_logging, get_logger, log_context
from common.util import parse_timestamp, utcnow


class TestConfig:
    """Test configuration management"""

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        """Test defaults when nothing is configured"""
        config = Config.from_env()

        assert isinstance(config.ncentral, NCentralConfig)
        assert isinstance(config.app, AppConfig)
        assert config.ncentral.base_url == ""
        assert config.ncentral.timeout == 30
        assert config.ncentral.max_retries == 5
        assert config.ncentral.page_size == 100
        assert config.ncentral.max_pages == 500
        assert config.app.log_level == "INFO"
        assert config.app.debug is False

    @patch.dict(os.environ, {
        'NCENTRAL_BASE_URL': 'https://ncentral.example.com/',
        'NCENTRAL_ACCESS_TOKEN': 'token',
        'NCENTRAL_MAX_RETRIES': '3',
        'NCENTRAL_PAGE_SIZE': '250',
        'LOG_LEVEL': 'DEBUG',
        'DEBUG': 'true',
    }, clear=True)
    def test_from_env(self):
        """Test values are read from the environment"""
        config = Config.from_env()

        assert config.ncentral.base_url == "https://ncentral.example.com"
        assert config.ncentral.access_token == "token"
        assert config.ncentral.max_retries == 3
        assert config.ncentral.page_size == 250
        assert config.app.log_level == "DEBUG"
        assert config.app.debug is True
        # Should not raise an exception
        config.validate()

    def test_ncentral_config_is_immutable(self):
        """Test the credential context cannot be changed after creation"""
        ncentral = NCentralConfig(base_url="https://ncentral.example.com", access_token="token")

        with pytest.raises(FrozenInstanceError):
            ncentral.access_token = "other"

    def test_validation_missing_base_url(self):
        """Test configuration validation with a missing server"""
        config = Config(NCentralConfig(base_url="", access_token="token"))

        with pytest.raises(ValueError, match="NCENTRAL_BASE_URL is required"):
            config.validate()

    def test_validation_missing_token(self):
        """Test configuration validation with a missing token"""
        config = Config(NCentralConfig(base_url="https://ncentral.example.com", access_token=""))

        with pytest.raises(ValueError, match="NCENTRAL_ACCESS_TOKEN is required"):
            config.validate()

    def test_validation_retry_count(self):
        """Test at least one attempt is required"""
        config = Config(NCentralConfig(base_url="https://ncentral.example.com", access_token="t", max_retries=0))

        with pytest.raises(ValueError, match="NCENTRAL_MAX_RETRIES"):
            config.validate()

    @patch.dict(os.environ, {}, clear=True)
    def test_load_config_reads_env_file(self, tmp_path):
        """Test a .env file supplies missing settings"""
        env_file = tmp_path / ".env"
        env_file.write_text("NCENTRAL_BASE_URL=https://from-file.example.com\nNCENTRAL_ACCESS_TOKEN=abc\n")

        config = load_config(str(env_file))

        assert config.ncentral.base_url == "https://from-file.example.com"
        assert config.ncentral.access_token == "abc"


class TestLogging:
    """Test logging setup"""

    def test_logging_setup(self):
        """Test logging setup"""
        setup_logging("DEBUG")
        logger = get_logger("test")
        assert logger is not None

        # Test logging works
        logger.info("Test message", **log_context(device_id=1))

    def test_log_context(self):
        """Test log context is a plain dictionary"""
        assert log_context(device_id=1, rows=2) == {'device_id': 1, 'rows': 2}


class TestUtil:
    """Test utility helpers"""

    def test_utcnow_is_aware(self):
        """Test utcnow carries UTC tzinfo"""
        assert utcnow().tzinfo == timezone.utc

    def test_parse_iso_with_z(self):
        """Test ISO strings with a Z suffix"""
        assert parse_timestamp("2026-10-01T08:00:00Z") == datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc)

    def test_parse_naive_iso(self):
        """Test naive ISO strings are treated as UTC"""
        assert parse_timestamp("2026-10-01T08:00:00") == datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc)

    def test_parse_epoch(self):
        """Test epoch seconds and milliseconds"""
        expected = datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc)
        seconds = int(expected.timestamp())

        assert parse_timestamp(seconds) == expected
        assert parse_timestamp(seconds * 1000) == expected

    @pytest.mark.parametrize('value', [None, '', 'yesterday', True, {'when': 'now'}])
    def test_parse_unusable(self, value):
        """Test missing or unparseable values yield None"""
        assert parse_timestamp(value) is None
