"""
Unit tests for Configuration module.

Covers the settings groups the chat pipeline depends on, their validators
and computed properties.
"""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from app.core.config import (
    ConfigValidator,
    EnvironmentEnum,
    LogFormatEnum,
    PromptProfileEnum,
    Settings,
    get_config_summary,
    settings,
)


class TestSettings:
    """Test cases for Settings configuration."""

    def test_chat_defaults(self, monkeypatch):
        """Test default values of the chat pipeline settings."""
        monkeypatch.delenv("LAST_K_CHAT_HISTORY", raising=False)
        monkeypatch.delenv("CHAT_HISTORY_WINDOW", raising=False)
        test_settings = Settings(_env_file=None)

        assert test_settings.chat_history_window == 5
        assert test_settings.retrieval_top_k == 4
        assert test_settings.chat_title_length == 100
        assert test_settings.stream_end_sentinel == "\x00__END__END__\x00"
        assert test_settings.prompt_profile == PromptProfileEnum.documents
        assert test_settings.chunk_size == 1000
        assert test_settings.chunk_overlap == 200
        assert test_settings.max_upload_size == 10 * 1024 * 1024

    def test_history_window_env_alias(self, monkeypatch):
        """LAST_K_CHAT_HISTORY configures the history window."""
        monkeypatch.setenv("LAST_K_CHAT_HISTORY", "7")
        test_settings = Settings(_env_file=None)
        assert test_settings.chat_history_window == 7

    def test_environment_validation(self):
        """Test environment shortcuts."""
        assert Settings(_env_file=None, environment="dev").environment == EnvironmentEnum.development
        assert Settings(_env_file=None, environment="prod").environment == EnvironmentEnum.production
        assert Settings(_env_file=None, environment="test").environment == EnvironmentEnum.testing
        assert Settings(_env_file=None, environment="STAGING").environment == EnvironmentEnum.staging

    def test_upload_size_limit(self):
        """Upload size is capped at 100MB."""
        Settings(_env_file=None, max_upload_size=100 * 1024 * 1024)
        with pytest.raises(ValidationError) as exc_info:
            Settings(_env_file=None, max_upload_size=100 * 1024 * 1024 + 1)
        assert "100MB" in str(exc_info.value)

    def test_chunk_overlap_must_be_smaller_than_chunk_size(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, chunk_size=500, chunk_overlap=500)

    def test_prompt_profile_values(self):
        test_settings = Settings(_env_file=None, prompt_profile="marketing")
        assert test_settings.prompt_profile == PromptProfileEnum.marketing

        with pytest.raises(ValidationError):
            Settings(_env_file=None, prompt_profile="pirate")

    def test_chroma_url_parsing(self):
        local = Settings(_env_file=None, chroma_url="http://chroma:8000")
        assert local.chroma_host == "chroma"
        assert local.chroma_port == 8000
        assert local.chroma_ssl is False

        hosted = Settings(_env_file=None, chroma_url="https://vectors.example.com")
        assert hosted.chroma_host == "vectors.example.com"
        assert hosted.chroma_port == 443
        assert hosted.chroma_ssl is True

    def test_allowed_origins_list(self):
        test_settings = Settings(_env_file=None, allowed_origins="http://a.test, http://b.test,")
        assert test_settings.allowed_origins_list == ["http://a.test", "http://b.test"]

    def test_log_format(self):
        assert Settings(_env_file=None, log_format="simple").log_format == LogFormatEnum.simple


class TestConfigValidator:
    """Test cases for ConfigValidator."""

    def test_validate_required_settings_success(self):
        with patch("app.core.config.settings") as mock_settings:
            mock_settings.database_url = "postgresql+asyncpg://u:p@db/chat"
            mock_settings.clerk_secret_key = "sk_test"
            mock_settings.is_production = True
            mock_settings.gemini_api_key = "key"

            ConfigValidator.validate_required_settings()

    def test_validate_required_settings_collects_errors(self):
        with patch("app.core.config.settings") as mock_settings:
            mock_settings.database_url = None
            mock_settings.clerk_secret_key = None
            mock_settings.is_production = True
            mock_settings.gemini_api_key = None

            with pytest.raises(ValueError) as exc_info:
                ConfigValidator.validate_required_settings()

        message = str(exc_info.value)
        assert "DATABASE_URL" in message
        assert "CLERK_SECRET_KEY" in message
        assert "GEMINI_API_KEY" in message

    def test_environment_properties(self):
        testing = Settings(_env_file=None, environment="testing")
        assert testing.is_testing is True
        assert testing.is_production is False

    def test_feature_status(self):
        status = ConfigValidator.get_feature_status()

        assert status["ai_enabled"] == settings.has_ai_enabled
        assert status["prompt_profile"] == settings.prompt_profile.value
        assert status["history_window"] == settings.chat_history_window

    def test_config_summary(self):
        summary = get_config_summary()

        assert summary["app_name"] == settings.app_name
        assert "features" in summary
        assert summary["database_configured"] is True
