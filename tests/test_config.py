"""Tests for configuration loading and validation."""

import pytest

from callflow.config import GROQ_BASE_URL, Settings, load_settings, validate_settings
from callflow.db import InMemoryDB, get_db
from callflow.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _env(clean_env):
    yield


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings()
        assert settings.transcript_char_limit == 3000
        assert settings.min_transcript_chars == 20
        assert settings.lead_match_window_minutes == 5
        assert settings.allow_default_agency is True
        assert settings.attribute_to_assigned_agent is False
        assert settings.webhook_secret is None
        assert not settings.ai_enabled

    def test_groq_key_uses_groq_endpoint(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk_test")
        settings = load_settings()
        assert settings.ai_enabled
        assert settings.ai_base_url == GROQ_BASE_URL
        assert settings.ai_model == "llama-3.1-8b-instant"

    def test_explicit_key_wins(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk_test")
        monkeypatch.setenv("AI_API_KEY", "sk_gateway")
        monkeypatch.setenv("AI_BASE_URL", "https://gateway.example.com/v1")
        settings = load_settings()
        assert settings.ai_api_key == "sk_gateway"
        assert settings.ai_base_url == "https://gateway.example.com/v1"

    def test_flags(self, monkeypatch):
        monkeypatch.setenv("ALLOW_DEFAULT_AGENCY", "false")
        monkeypatch.setenv("ATTRIBUTE_TO_ASSIGNED_AGENT", "1")
        settings = load_settings()
        assert settings.allow_default_agency is False
        assert settings.attribute_to_assigned_agent is True

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("TRANSCRIPT_CHAR_LIMIT", "lots")
        with pytest.raises(ValueError, match="TRANSCRIPT_CHAR_LIMIT"):
            load_settings()


class TestValidateSettings:
    def test_default_settings_pass(self):
        validate_settings(Settings())

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="STORE_BACKEND"):
            validate_settings(Settings(store_backend="redis"))

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError, match="LEAD_MATCH_WINDOW_MINUTES"):
            validate_settings(Settings(lead_match_window_minutes=0))

    def test_unknown_timezone(self):
        with pytest.raises(ValueError, match="DAILY_STATE_TIMEZONE"):
            validate_settings(Settings(daily_state_timezone="Mars/Olympus"))


class TestGetDb:
    def test_memory_backend_is_singleton(self):
        settings = Settings(store_backend="memory")
        db = get_db(settings)
        assert isinstance(db, InMemoryDB)
        assert get_db(settings) is db

    def test_missing_supabase_credentials(self):
        with pytest.raises(ConfigurationError):
            get_db(Settings(store_backend="supabase"))
