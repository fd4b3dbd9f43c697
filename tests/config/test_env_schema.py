"""Tests for environment variable schema."""

import pytest
from pydantic import ValidationError

from fitness_pal.config.env_schema import EnvironmentConfig
from fitness_pal.utils.exceptions import ConfigurationError


class TestEnvironmentConfig:
    """Test the EnvironmentConfig model."""

    def test_default_values(self):
        """Test default values when environment variables are not set."""
        config = EnvironmentConfig()

        assert config.api_base_url == "https://web-production-aafa6.up.railway.app"
        assert config.request_timeout == 30.0
        assert config.store_url is None
        assert config.store_path is None
        assert config.log_level == "INFO"
        assert config.log_dir == "logs"
        assert config.config_file == "fitness_pal.yml"

    def test_load_from_env_vars(self, mock_env_vars, monkeypatch):
        """Test loading configuration from environment variables."""
        monkeypatch.setenv("FITNESS_PAL_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("FITNESS_PAL_LOG_DIR", "custom_logs")

        config = EnvironmentConfig()

        assert config.api_base_url == "https://api.test"
        assert config.request_timeout == 5.0
        assert config.store_url == "https://store.test/rest/v1"
        assert config.store_api_key == "test_store_key_1234"
        assert config.log_level == "DEBUG"
        assert config.log_path.name == "custom_logs"

    def test_env_file_is_read(self, tmp_path):
        """Test values from a .env file in the working directory."""
        (tmp_path / ".env").write_text("FITNESS_PAL_STORE_PATH=data/conversations\n")

        assert EnvironmentConfig().store_path == "data/conversations"

    def test_log_level_validation(self, monkeypatch):
        """Test log level validation."""
        monkeypatch.setenv("FITNESS_PAL_LOG_LEVEL", "WARNING")
        assert EnvironmentConfig().log_level == "WARNING"

        monkeypatch.setenv("FITNESS_PAL_LOG_LEVEL", "INVALID")
        with pytest.raises(ValidationError):
            EnvironmentConfig()

    def test_timeout_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("FITNESS_PAL_REQUEST_TIMEOUT", "0")
        with pytest.raises(ValidationError):
            EnvironmentConfig()

    def test_field_names_are_accepted(self):
        config = EnvironmentConfig(api_base_url="https://other.test/", request_timeout=3)
        assert config.api_base_url == "https://other.test"

    def test_store_settings_validation(self, monkeypatch):
        """Test that a store URL requires an API key."""
        EnvironmentConfig().validate_store_settings()

        monkeypatch.setenv("FITNESS_PAL_STORE_URL", "https://store.test")
        with pytest.raises(ConfigurationError) as exc_info:
            EnvironmentConfig().validate_store_settings()
        assert "FITNESS_PAL_STORE_API_KEY" in exc_info.value.details["missing_variables"]

        monkeypatch.setenv("FITNESS_PAL_STORE_API_KEY", "key-123456789")
        EnvironmentConfig().validate_store_settings()

    def test_mask_sensitive_values(self, mock_env_vars):
        """Test masking of API keys."""
        masked = EnvironmentConfig().mask_sensitive_values()

        assert masked["store_api_key"] == "*" * 15 + "1234"
        assert masked["api_base_url"] == "https://api.test"

    def test_mask_short_key(self, monkeypatch):
        monkeypatch.setenv("FITNESS_PAL_STORE_API_KEY", "short")
        assert EnvironmentConfig().mask_sensitive_values()["store_api_key"] == "****"
