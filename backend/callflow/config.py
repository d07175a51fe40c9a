"""
Environment-driven settings for the call-event pipeline.

Values are read once per ``load_settings()`` call so tests and the
running service can build settings from whatever environment is active.
"""

import os
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


def _safe_int(env_var: str, default: str) -> int:
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid integer for {env_var}: {raw!r}") from None


def _safe_float(env_var: str, default: str) -> float:
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float for {env_var}: {raw!r}") from None


def _flag(env_var: str, default: str) -> bool:
    return str(os.getenv(env_var, default)).strip().lower() in ("1", "true", "yes", "on")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    store_backend: str = "supabase"

    ai_api_key: Optional[str] = None
    ai_base_url: Optional[str] = None
    ai_model: str = "gpt-4o-mini"
    ai_timeout_seconds: float = 20.0

    transcript_char_limit: int = 3000
    min_transcript_chars: int = 20
    lead_match_window_minutes: int = 5

    allow_default_agency: bool = True
    daily_state_timezone: str = "UTC"
    attribute_to_assigned_agent: bool = False

    webhook_secret: Optional[str] = None
    log_level: str = "INFO"

    @property
    def ai_enabled(self) -> bool:
        return bool(self.ai_api_key)


def _resolve_ai_credentials():
    """Pick the AI key/base URL/model: explicit gateway first, then OpenAI, then Groq."""
    explicit = _clean(os.getenv("AI_API_KEY"))
    openai_key = _clean(os.getenv("OPENAI_API_KEY"))
    groq_key = _clean(os.getenv("GROQ_API_KEY"))
    base_url = _clean(os.getenv("AI_BASE_URL"))
    model = _clean(os.getenv("AI_MODEL"))
    if explicit:
        return explicit, base_url, model or "gpt-4o-mini"
    if openai_key:
        return openai_key, base_url, model or "gpt-4o-mini"
    if groq_key:
        return groq_key, base_url or GROQ_BASE_URL, model or os.getenv("GROQ_MODEL", "llama-3.1-8b-instant")
    return None, base_url, model or "gpt-4o-mini"


def validate_settings(settings: Settings) -> None:
    if settings.store_backend not in ("supabase", "memory"):
        raise ValueError(f"STORE_BACKEND must be 'supabase' or 'memory', got {settings.store_backend!r}")
    if settings.ai_timeout_seconds <= 0:
        raise ValueError(f"AI_TIMEOUT_SECONDS must be > 0, got {settings.ai_timeout_seconds}")
    if settings.transcript_char_limit < 1:
        raise ValueError(f"TRANSCRIPT_CHAR_LIMIT must be >= 1, got {settings.transcript_char_limit}")
    if settings.min_transcript_chars < 0:
        raise ValueError(f"MIN_TRANSCRIPT_CHARS must be >= 0, got {settings.min_transcript_chars}")
    if settings.lead_match_window_minutes < 1:
        raise ValueError(
            f"LEAD_MATCH_WINDOW_MINUTES must be >= 1, got {settings.lead_match_window_minutes}"
        )
    try:
        ZoneInfo(settings.daily_state_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"DAILY_STATE_TIMEZONE is not a known timezone: {settings.daily_state_timezone!r}"
        ) from None


def load_settings() -> Settings:
    """Build and validate settings from the current environment (and .env, if present)."""
    load_dotenv()
    ai_key, ai_base_url, ai_model = _resolve_ai_credentials()
    settings = Settings(
        supabase_url=_clean(os.getenv("SUPABASE_URL")),
        supabase_service_role_key=_clean(os.getenv("SUPABASE_SERVICE_ROLE_KEY")),
        store_backend=os.getenv("STORE_BACKEND", "supabase").strip().lower(),
        ai_api_key=ai_key,
        ai_base_url=ai_base_url,
        ai_model=ai_model,
        ai_timeout_seconds=_safe_float("AI_TIMEOUT_SECONDS", "20"),
        transcript_char_limit=_safe_int("TRANSCRIPT_CHAR_LIMIT", "3000"),
        min_transcript_chars=_safe_int("MIN_TRANSCRIPT_CHARS", "20"),
        lead_match_window_minutes=_safe_int("LEAD_MATCH_WINDOW_MINUTES", "5"),
        allow_default_agency=_flag("ALLOW_DEFAULT_AGENCY", "true"),
        daily_state_timezone=os.getenv("DAILY_STATE_TIMEZONE", "UTC").strip() or "UTC",
        attribute_to_assigned_agent=_flag("ATTRIBUTE_TO_ASSIGNED_AGENT", "false"),
        webhook_secret=_clean(os.getenv("WEBHOOK_SECRET")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
    validate_settings(settings)
    return settings
