"""Application configuration via environment variables.

Uses pydantic-settings to load from .env file and environment variables.
All config is centralized here; modules should import `get_settings()`.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─── App ───
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:3000",  # Next.js dev server
        "http://127.0.0.1:3000",
    ]

    # ─── Trading Bot Backend ───
    api_url: str = "http://localhost:8080"
    api_timeout: float = 10.0  # seconds
    api_max_retries: int = 2  # GET retries after the initial attempt

    # ─── Live Price Stream ───
    price_ws_url: str | None = None  # overrides the origin derived from api_url
    price_ws_path: str = "/api/ws/btc-price"
    price_max_reconnect_attempts: int = 5
    price_initial_retry_delay: float = 1.0  # seconds
    price_max_retry_delay: float = 30.0  # seconds
    price_request_timeout: float = 10.0  # seconds
    price_open_timeout: float = 10.0  # seconds

    # ─── Token Storage ───
    token_store_path: str | None = None  # in-memory store when unset
    encryption_key: str | None = None  # Fernet key, required by FileTokenStore


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton.

    Uses lru_cache so Settings is only instantiated once.
    In tests, call `get_settings.cache_clear()` to reset.
    """
    return Settings()
