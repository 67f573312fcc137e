from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from asktrevor.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the Ask Trevor function host."""

    # LLM gateway (chat/completions)
    gateway_url: str = env_field("https://ai.gateway.lovable.dev", "GATEWAY_URL")
    gateway_api_key: str | None = env_field(None, "LOVABLE_API_KEY")
    gateway_timeout_seconds: float = env_field(120.0, "GATEWAY_TIMEOUT_SECONDS")
    chat_model: str = env_field("google/gemini-2.5-flash", "CHAT_MODEL")
    demo_model: str = env_field("google/gemini-2.5-flash-lite", "DEMO_MODEL")
    demo_max_tokens: int = env_field(300, "DEMO_MAX_TOKENS")
    email_temperature: float = env_field(0.7, "EMAIL_TEMPERATURE")

    # Speech-to-text
    transcription_url: str = env_field(
        "https://api.openai.com/v1/audio/transcriptions", "TRANSCRIPTION_URL"
    )
    transcription_api_key: str | None = env_field(None, "OPENAI_API_KEY")
    transcription_model: str = env_field("whisper-1", "TRANSCRIPTION_MODEL")

    # Identity
    auth_url: str | None = env_field(None, "AUTH_URL")
    auth_anon_key: str | None = env_field(None, "AUTH_ANON_KEY")
    auth_jwt_secret: str | None = env_field(None, "AUTH_JWT_SECRET")
    auth_jwt_audience: str | None = env_field("authenticated", "AUTH_JWT_AUDIENCE")

    # Storage
    database_url: str = env_field(
        "postgresql://localhost:5432/asktrevor", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allows runtime resets and token registration in the memory store.",
    )

    # Rate limits; max <= 0 disables a policy
    transcription_rate_limit: int = env_field(10, "TRANSCRIPTION_RATE_LIMIT")
    transcription_rate_window_seconds: int = env_field(
        3600, "TRANSCRIPTION_RATE_WINDOW_SECONDS"
    )
    demo_rate_limit: int = env_field(5, "DEMO_RATE_LIMIT")
    demo_rate_window_seconds: int = env_field(3600, "DEMO_RATE_WINDOW_SECONDS")

    email_sender_address: str = env_field("noreply@example.com", "EMAIL_SENDER_ADDRESS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("gateway_url", "auth_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.rstrip("/")


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
