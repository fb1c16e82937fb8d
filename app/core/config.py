"""Application configuration."""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI (optional, only used to extend the stall phrase pool at startup)
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    generate_stall_phrases: bool = False
    generated_phrase_count: int = Field(default=10, ge=1, le=50)

    # Twilio
    twilio_auth_token: Optional[str] = None
    validate_twilio_signature: bool = False
    base_url: Optional[str] = None

    # Database (call archive)
    database_url: str = "sqlite+aiosqlite:///./pleasehold.db"

    # Conversation engine
    max_turns: int = Field(default=40, ge=1)
    silence_cycle_limit: int = Field(default=2, ge=1)
    min_speech_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    phrase_bank_file: Optional[str] = None

    # Gather / TwiML rendering
    gather_timeout_seconds: int = Field(default=3, ge=1)
    max_speech_time_seconds: int = Field(default=10, ge=1)
    tts_voice: str = "Polly.Matthew"

    # Dashboard stats
    reporting_timezone: str = "UTC"
    recent_calls_limit: int = Field(default=20, ge=1)

    # Session retention (None keeps finished sessions in memory forever).
    # Evicted calls stay in the SQL archive but drop out of /api/stats totals
    # until the next restart restores them.
    session_retention_hours: Optional[float] = Field(default=None, gt=0)
    eviction_interval_seconds: int = Field(default=300, ge=1)

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
