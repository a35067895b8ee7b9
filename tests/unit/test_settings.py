"""
Unit tests for configuration loading.
"""

import pytest
from pydantic import ValidationError

from merchant_assistant.config.settings import Settings, get_settings, reset_settings


class TestSettings:
    """Tests for Settings"""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        settings = Settings(_env_file=None)

        assert settings.CONTEXT_MAX_RECENT_MESSAGES == 10
        assert settings.CONTEXT_TTL_HOURS == 24
        assert settings.SKILLS_CACHE_TTL_SECONDS == 600
        assert settings.ENTITY_AMBIGUITY_GAP == 0.1
        assert settings.HYBRID_RISK_FACTOR_THRESHOLD == 3
        assert settings.LLM_PROVIDER == "none"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("CONTEXT_TTL_HOURS", "2")

        settings = Settings(_env_file=None)

        assert settings.LOG_LEVEL == "DEBUG"
        assert settings.CONTEXT_TTL_HOURS == 2

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, LOG_LEVEL="VERBOSE")

    def test_unit_interval(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ENTITY_AMBIGUITY_GAP=1.5)

    def test_input_length_order(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ENTITY_SHORT_INPUT_LEN=6, ENTITY_LONG_INPUT_LEN=6)

    def test_comparison_confidence_must_escalate(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, QUERY_COMPARISON_RULE_CONFIDENCE=0.7)

        settings = Settings(_env_file=None, QUERY_ESCALATE_COMPARISONS=False, QUERY_COMPARISON_RULE_CONFIDENCE=0.7)
        assert settings.QUERY_COMPARISON_RULE_CONFIDENCE == 0.7


class TestSettingsSingleton:
    def test_cached_until_reset(self):
        first = get_settings()
        assert get_settings() is first

        reset_settings()
        assert get_settings() is not first
