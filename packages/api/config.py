"""API configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="DOCS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8007
    debug: bool = False

    # API configuration
    api_title: str = "Embedded Authorization Demo"
    api_version: str = "1.0.0"

    # Development login
    session_cookie: str = "user"
    session_max_age: int = 3600
    secure_cookies: bool = False

