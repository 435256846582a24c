"""chatkernel configuration via environment / .env file."""

from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CHATKERNEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Local model runtime ---
    OLLAMA_HOST: str = "http://localhost:11434"
    CONNECT_TIMEOUT: float = 10.0

    # --- Model defaults ---
    DEFAULT_MODEL: str | None = None

    # --- Plugin settings source ---
    SETTINGS_DIR: str | None = None

    # --- Logging ---
    LOG_LEVEL: str = "WARNING"

    @field_validator("OLLAMA_HOST", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @field_validator("DEFAULT_MODEL", "SETTINGS_DIR", mode="before")
    @classmethod
    def _empty_is_none(cls, v: str | None) -> str | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v


settings = Settings()
