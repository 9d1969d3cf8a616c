"""
Configuration settings for the voice tutor.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Anki Integration
    # ========================================
    anki_connect_url: str = Field(
        default="http://127.0.0.1:8765",
        description="AnkiConnect plugin URL",
    )
    anki_connect_version: int = Field(
        default=6,
        description="AnkiConnect API version sent with every request",
    )
    anki_timeout_seconds: float = Field(
        default=10.0,
        description="HTTP timeout for a single AnkiConnect request",
    )

    # ========================================
    # Realtime Dialogue Agent
    # ========================================
    openai_api_key: str | None = Field(
        default=None,
        description="API key for the realtime dialogue agent",
    )
    realtime_url: str = Field(
        default="wss://api.openai.com/v1/realtime",
        description="Realtime websocket endpoint (model is appended as a query param)",
    )
    realtime_model: str = Field(
        default="gpt-realtime-mini",
        description="Realtime model used for the spoken tutor",
    )
    transcription_model: str | None = Field(
        default="whisper-1",
        description="Input transcription model (None disables user transcripts)",
    )
    greeting_instructions: str = Field(
        default="Say hello to the user.",
        description="Instruction sent with the default greeting after connecting",
    )

    # ========================================
    # Session Behavior
    # ========================================
    verdict_display_seconds: float = Field(
        default=3.0,
        description="How long a grading verdict stays visible before clearing",
    )
    connect_timeout_seconds: float = Field(
        default=15.0,
        description="Upper bound for the transport connect handshake",
    )
    card_source_timeout_seconds: float = Field(
        default=20.0,
        description="Upper bound for any single card source call",
    )

    # ========================================
    # Audio
    # ========================================
    audio_sample_rate: int = Field(
        default=24000,
        description="PCM16 sample rate for microphone capture and playback",
    )
    audio_block_ms: int = Field(
        default=40,
        description="Microphone block size in milliseconds",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default="logs/voice_tutor.log",
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Helper Methods
    # ========================================
    def has_realtime_configured(self) -> bool:
        """Check if the realtime dialogue agent can be reached."""
        return bool(self.openai_api_key)

    def get_realtime_endpoint(self) -> str:
        """Full websocket URL including the model query parameter."""
        separator = "&" if "?" in self.realtime_url else "?"
        return f"{self.realtime_url}{separator}model={self.realtime_model}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
