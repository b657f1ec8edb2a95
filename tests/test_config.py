"""
Tests for Configuration Module

Tests the Settings and configuration management.
"""

import os
import pytest
from unittest.mock import patch


class TestGetEnv:
    """Tests for environment variable helpers."""

    def test_get_env_with_default(self):
        """Test getting env var with default."""
        from shuttle_voice.config import get_env

        result = get_env("NONEXISTENT_VAR", "default_value")
        assert result == "default_value"

    def test_get_env_existing(self):
        """Test getting existing env var."""
        from shuttle_voice.config import get_env

        with patch.dict(os.environ, {"TEST_VAR": "test_value"}):
            result = get_env("TEST_VAR")
            assert result == "test_value"

    def test_get_env_required_missing(self):
        """Test required env var raises error when missing."""
        from shuttle_voice.config import get_env

        with pytest.raises(ValueError):
            get_env("DEFINITELY_NOT_SET", required=True)


class TestGetEnvTyped:
    """Tests for typed environment variable helpers."""

    def test_get_env_int(self):
        """Test getting int from env."""
        from shuttle_voice.config import get_env_int

        with patch.dict(os.environ, {"INT_VAR": "42"}):
            result = get_env_int("INT_VAR", 0)
            assert result == 42
            assert isinstance(result, int)

    def test_get_env_float(self):
        """Test getting float from env."""
        from shuttle_voice.config import get_env_float

        with patch.dict(os.environ, {"FLOAT_VAR": "0.3"}):
            result = get_env_float("FLOAT_VAR", 0.0)
            assert result == 0.3
            assert isinstance(result, float)

    def test_get_env_list(self):
        """Test comma-separated list parsing."""
        from shuttle_voice.config import get_env_list

        with patch.dict(os.environ, {"LIST_VAR": "http://a.test, http://b.test,,"}):
            assert get_env_list("LIST_VAR") == ["http://a.test", "http://b.test"]


class TestAgentType:
    """Tests for agent variant parsing."""

    def test_parse_case_insensitive(self):
        from shuttle_voice.config import AgentType

        assert AgentType.parse("Booking") is AgentType.BOOKING
        assert AgentType.parse(" retrieval ") is AgentType.RETRIEVAL

    def test_parse_unknown_with_default(self):
        from shuttle_voice.config import AgentType

        assert AgentType.parse("concierge", default=AgentType.RETRIEVAL) is AgentType.RETRIEVAL

    def test_parse_unknown_without_default(self):
        from shuttle_voice.config import AgentType

        with pytest.raises(ValueError):
            AgentType.parse("concierge")


class TestAWSConfig:
    """Tests for AWS configuration."""

    def test_endpoint_uri(self):
        """Test runtime endpoint construction."""
        from shuttle_voice.config import AWSConfig

        config = AWSConfig(region="eu-west-1")
        assert config.endpoint_uri == "https://bedrock-runtime.eu-west-1.amazonaws.com"

    def test_region_from_env(self):
        from shuttle_voice.config import AWSConfig

        with patch.dict(os.environ, {"AWS_REGION_VOICE": "us-west-2", "AWS_REGION": "ap-south-1"}):
            config = AWSConfig()
            assert config.region == "us-west-2"
            assert config.kb_region == "ap-south-1"


class TestInferenceSettings:
    """Tests for inference configuration."""

    def test_defaults_to_protocol(self):
        from shuttle_voice.config import InferenceSettings

        assert InferenceSettings(max_tokens=1024, top_p=0.9, temperature=0.7).to_protocol() == {
            "maxTokens": 1024,
            "topP": 0.9,
            "temperature": 0.7,
        }


class TestSessionConfig:
    """Tests for session configuration."""

    def test_defaults(self):
        from shuttle_voice.config import SessionConfig

        config = SessionConfig()
        assert config.audio_queue_max_size == 200
        assert config.audio_batch_size == 5
        assert config.idle_timeout_s == 300.0
        assert config.content_end_delay_s == 0.5

    def test_validate_invalid_queue_size(self):
        """Test validation fails with non-positive queue size."""
        from shuttle_voice.config import SessionConfig

        config = SessionConfig()
        config.audio_queue_max_size = 0

        with pytest.raises(ValueError, match="positive"):
            config.validate()

    def test_validate_negative_delay(self):
        """Test validation fails with a negative close delay."""
        from shuttle_voice.config import SessionConfig

        config = SessionConfig()
        config.prompt_end_delay_s = -1

        with pytest.raises(ValueError, match="negative"):
            config.validate()


class TestKnowledgeBaseConfig:
    """Tests for knowledge base routing."""

    def test_ids_for_variant(self):
        from shuttle_voice.config import AgentType, KnowledgeBaseConfig

        config = KnowledgeBaseConfig(retrieval_ids=["A", "B"], booking_ids=["B", ""])
        assert config.ids_for(AgentType.RETRIEVAL) == ["A", "B"]
        assert config.ids_for(AgentType.BOOKING) == ["B"]


class TestSettings:
    """Tests for main Settings class."""

    def test_settings_singleton(self):
        """Test settings is accessible."""
        from shuttle_voice.config import settings

        assert settings is not None
        assert hasattr(settings, "aws")
        assert hasattr(settings, "session")
        assert hasattr(settings, "knowledge_base")

    def test_validate_all(self):
        from shuttle_voice.config import Settings

        assert Settings().validate_all() is True

    def test_is_development(self):
        """Test development mode detection."""
        from shuttle_voice.config import Settings

        settings = Settings()
        settings.app_env = "development"
        assert settings.is_development is True

    def test_production_is_not_development(self):
        """Test production mode detection."""
        from shuttle_voice.config import Settings

        settings = Settings()
        settings.app_env = "production"
        assert settings.is_development is False
