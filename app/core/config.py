"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.services.orchestration.prompts import (
    DEFAULT_CONVERSATION_INSTRUCTIONS,
    DEFAULT_INTRO_TEXT,
    DEFAULT_NOTICE_TEXT,
    DEFAULT_STRICT_INSTRUCTIONS,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: str
    openai_webhook_secret: Optional[str] = None
    openai_api_base: str = "https://api.openai.com/v1"
    openai_realtime_ws_base: str = "wss://api.openai.com/v1"

    # Realtime session
    realtime_model: str = "gpt-4o-realtime-preview"
    realtime_voice: str = "marin"
    audio_format: str = "g711_ulaw"
    transcription_model: str = "whisper-1"  # empty string disables live ASR
    conversation_temperature: float = 0.6

    # Speak-first script
    primer_text: str = ""  # optional warm-up line before the notice
    notice_text: str = DEFAULT_NOTICE_TEXT
    intro_text: str = DEFAULT_INTRO_TEXT
    strict_instructions: str = DEFAULT_STRICT_INSTRUCTIONS
    conversation_instructions: str = DEFAULT_CONVERSATION_INSTRUCTIONS

    # Timing (milliseconds unless noted)
    settle_delay_ms: int = 800
    inter_utterance_delay_ms: int = 250
    audio_start_timeout_ms: int = 1200
    accept_timeout_seconds: float = 10.0
    call_registry_ttl_seconds: int = 3600

    # Database
    database_url: str = "sqlite+aiosqlite:///./calls.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
