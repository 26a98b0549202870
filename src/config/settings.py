"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    # Deepgram live transcription
    deepgram_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("deepgram_api_key", "deepgram_key"),
    )
    deepgram_listen_url: str = Field(default="wss://api.deepgram.com/v1/listen")
    deepgram_api_url: str = Field(
        default="https://api.deepgram.com",
        description="REST base URL, used for the startup credential probe.",
    )
    deepgram_model: str = Field(default="nova-2")
    deepgram_language: str = Field(default="en")
    deepgram_endpointing_ms: int | None = Field(default=300, ge=0)
    deepgram_utterance_end_ms: int | None = Field(default=1000, ge=0)
    deepgram_vad_events: bool = Field(default=True)
    deepgram_verify_on_startup: bool = Field(
        default=True,
        description="If true, checks the API key against the REST API once at boot (log only).",
    )

    # Per-call bridging
    keepalive_interval_seconds: float = Field(default=10.0, gt=0)
    audio_queue_capacity: int = Field(
        default=400,
        gt=0,
        description="Frames buffered while the upstream connection is still opening.",
    )
    audio_flow_log_every: int = Field(
        default=50,
        ge=0,
        description="Log an audio-flow line every N inbound frames (0 disables).",
    )

    # Transcript delivery
    transcript_webhook_url: str | None = Field(
        default=None,
        description="Optional HTTP endpoint that receives finalized transcripts.",
    )
    transcript_webhook_api_key: str | None = Field(default=None)
    transcript_webhook_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("deepgram_api_key")
    @classmethod
    def strip_api_key(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
