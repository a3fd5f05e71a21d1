"""
Application configuration via environment variables.
"""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App settings
    app_name: str = "Snap Judge API"
    debug: bool = False

    # CORS
    cors_origins: list[str] = ["http://localhost:5173"]

    # Storage backend: "memory" for in-memory, "sql" for database
    storage_type: Literal["memory", "sql"] = "memory"

    # Database (only used when storage_type="sql")
    database_url: str = "sqlite+aiosqlite:///./dev.db"

    # AI judge provider
    judge_provider: Literal["gemini", "http", "fake"] = "fake"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    judge_url: str = ""  # Remote judging endpoint for judge_provider="http"
    judge_timeout_seconds: float = 45.0
    image_fetch_timeout_seconds: float = 15.0

    # Game settings
    min_players_to_start: int = 2
    nickname_max_length: int = 20
    readiness_poll_seconds: float = 2.0

    # Inactive lobbies are garbage collected after this long
    lobby_expiry_hours: int = 2
    cleanup_interval_seconds: int = 3600


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
